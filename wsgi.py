#!/usr/bin/env python3
"""
WSGI principal pour la Marketplace API
Point d'entrée gunicorn : gunicorn -c gunicorn_config.py wsgi:application
"""

import os
import sys
import traceback

print(f"🐍 Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}")


def import_application():
    """Importe l'application et initialise la base ; None en cas d'échec"""
    try:
        import sqlalchemy
        import flask
        print(f"✅ SQLAlchemy {sqlalchemy.__version__}")
        print(f"✅ Flask {flask.__version__}")

        print("📦 Import de l'application...")
        from marketplace_app import app, initialize_database
        print("✅ Application importée")

        if os.environ.get('INIT_DB_ON_START', '1') == '1':
            try:
                initialize_database()
            except Exception as db_error:
                print(f"⚠️ Erreur init DB: {db_error}")

        return app

    except Exception as e:
        print(f"❌ Erreur lors de l'import de l'application: {e}")
        traceback.print_exc()
        return None


def create_fallback_app():
    """Crée une app de fallback en cas d'erreur"""
    from flask import Flask

    fallback_app = Flask(__name__)

    @fallback_app.route('/')
    def status():
        return {
            "success": False,
            "message": "Erreur de configuration de l'application",
            "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
        }, 500

    @fallback_app.route('/health')
    def health():
        return {"status": "fallback", "python": f"{sys.version_info.major}.{sys.version_info.minor}"}, 503

    return fallback_app


app = import_application()

if app is None:
    print("⚠️ Échec import - Création app de fallback")
    app = create_fallback_app()


# Interface WSGI pour Gunicorn
def application(environ, start_response):
    """Interface WSGI standard"""
    return app(environ, start_response)


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5002))
    app.run(host='0.0.0.0', port=port, debug=False)
