#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Marketplace API - Point d'entrée pour le développement
"""

import os
from marketplace_app import app

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5002))

    # En production, ne pas utiliser le mode debug
    debug_mode = os.environ.get('FLASK_ENV') == 'development'

    app.run(host='0.0.0.0', port=port, debug=debug_mode)
