#!/usr/bin/env python3
"""
Maintenance de la base de données
Supprime les paniers actifs abandonnés, les sessions expirées ou révoquées
et les tokens de réinitialisation expirés
"""
import os
import sys
import traceback

from marketplace_app import app
from auth_helpers import cleanup_expired_sessions, cleanup_expired_reset_tokens
from cart_helpers import purge_abandoned_carts


def run_cleanup(jours_inactivite=30):
    with app.app_context():
        print(f"🧹 Nettoyage de la base (paniers inactifs depuis {jours_inactivite} jours)...")
        paniers = purge_abandoned_carts(jours_inactivite)
        sessions = cleanup_expired_sessions()
        tokens = cleanup_expired_reset_tokens()

        print("✅ Nettoyage terminé")
        print(f"   Paniers supprimés: {paniers.get('nombre_nettoyes', 0)}")
        print(f"   Sessions supprimées: {sessions}")
        print(f"   Tokens supprimés: {tokens}")
        return {
            'paniers': paniers.get('nombre_nettoyes', 0),
            'sessions': sessions,
            'tokens': tokens
        }


if __name__ == '__main__':
    try:
        run_cleanup(int(os.environ.get('CART_RETENTION_DAYS', 30)))
    except Exception as e:
        print(f"❌ Erreur lors du nettoyage: {e}")
        traceback.print_exc()
        sys.exit(1)
