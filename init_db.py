#!/usr/bin/env python3
"""
Script d'initialisation de la base de données
Crée les tables, les grades, templates et catégories par défaut et le compte administrateur
(ADMIN_EMAIL, ADMIN_PASSWORD, ADMIN_NAME)
"""
import sys
import traceback


def main():
    try:
        from marketplace_app import initialize_database
        from email_config import get_email_config, test_email_connection
        initialize_database()

        if get_email_config()['ENABLED']:
            print("📧 Vérification de la configuration email...")
            test_email_connection()
        return 0
    except Exception as e:
        print(f"❌ Erreur d'initialisation: {e}")
        print(f"Traceback complet: {traceback.format_exc()}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
