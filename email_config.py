import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
import os

# Configuration pour différents fournisseurs d'email
EMAIL_PROVIDERS = {
    'gmail': {
        'SMTP_SERVER': 'smtp.gmail.com',
        'SMTP_PORT': 587,
        'USE_TLS': True,
    },
    'outlook': {
        'SMTP_SERVER': 'smtp-mail.outlook.com',
        'SMTP_PORT': 587,
        'USE_TLS': True,
    },
    'yahoo': {
        'SMTP_SERVER': 'smtp.mail.yahoo.com',
        'SMTP_PORT': 587,
        'USE_TLS': True,
    }
}


def get_email_config():
    """Configuration lue dans l'environnement à chaque envoi"""
    username = os.environ.get('MAIL_USERNAME', '')
    return {
        'ENABLED': os.environ.get('MAIL_ENABLED', '').lower() in ('1', 'true', 'yes'),
        'PROVIDER': os.environ.get('MAIL_PROVIDER', 'gmail'),
        'FROM_EMAIL': os.environ.get('MAIL_FROM', username),
        'FROM_NAME': os.environ.get('MAIL_FROM_NAME', 'Marketplace'),
        'USERNAME': username,
        'PASSWORD': os.environ.get('MAIL_PASSWORD', ''),
        'FRONTEND_URL_BASE': os.environ.get('FRONTEND_URL_BASE', 'http://localhost:5002')
    }


def send_email(to_email, subject, html_content, text_content=None):
    """
    Envoie un email avec le contenu HTML et texte
    Retourne False sans rien envoyer si l'envoi est désactivé
    """
    config = get_email_config()
    if not config['ENABLED']:
        print(f"[EMAIL] Envoi désactivé, email '{subject}' pour {to_email} ignoré")
        return False

    try:
        provider_config = EMAIL_PROVIDERS[config['PROVIDER']]

        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = f"{config['FROM_NAME']} <{config['FROM_EMAIL']}>"
        msg['To'] = to_email

        if text_content:
            msg.attach(MIMEText(text_content, 'plain', 'utf-8'))
        msg.attach(MIMEText(html_content, 'html', 'utf-8'))

        server = smtplib.SMTP(provider_config['SMTP_SERVER'], provider_config['SMTP_PORT'])
        if provider_config['USE_TLS']:
            server.starttls()
        server.login(config['USERNAME'], config['PASSWORD'])
        server.send_message(msg)
        server.quit()

        print(f"✅ Email envoyé avec succès à {to_email}")
        return True

    except Exception as e:
        print(f"❌ Erreur lors de l'envoi de l'email à {to_email}: {str(e)}")
        return False


def send_password_reset_email(to_email, nom, token):
    """Email contenant le lien de réinitialisation du mot de passe"""
    lien = f"{get_email_config()['FRONTEND_URL_BASE']}/reset-password?token={token}"
    html_content = f"""
    <html>
      <body>
        <p>Bonjour {nom},</p>
        <p>Vous avez demandé la réinitialisation de votre mot de passe.</p>
        <p><a href="{lien}">Réinitialiser mon mot de passe</a></p>
        <p>Ce lien expire dans une heure. Si vous n'êtes pas à l'origine de cette demande, ignorez cet email.</p>
      </body>
    </html>
    """
    text_content = (
        f"Bonjour {nom},\n\n"
        f"Pour réinitialiser votre mot de passe, ouvrez ce lien : {lien}\n"
        "Ce lien expire dans une heure."
    )
    return send_email(to_email, 'Réinitialisation de votre mot de passe', html_content, text_content)


def test_email_connection():
    """
    Teste la connexion email
    """
    config = get_email_config()
    try:
        provider_config = EMAIL_PROVIDERS[config['PROVIDER']]
        server = smtplib.SMTP(provider_config['SMTP_SERVER'], provider_config['SMTP_PORT'])
        if provider_config['USE_TLS']:
            server.starttls()
        server.login(config['USERNAME'], config['PASSWORD'])
        server.quit()

        print("✅ Connexion email réussie!")
        return True

    except Exception as e:
        print(f"❌ Erreur de connexion email: {str(e)}")
        return False
