#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Authentification JWT, sessions persistées et décorateurs d'autorisation
"""

from flask import request, g, current_app
from jose import jwt, JWTError, ExpiredSignatureError
from datetime import datetime, timedelta
import functools
import hashlib
import secrets
import uuid

from models import db, User, Vendor, Boutique, Product, AuthSession, PasswordResetToken
from api_response import unauthorized_response, forbidden_response, not_found_response, validation_error

JWT_ALGORITHM = 'HS256'
JWT_ISSUER = 'marketplace-api'

GRADES_NOMS = {1: 'Bronze', 2: 'Argent', 3: 'Or', 4: 'Platine'}


class AuthError(Exception):
    """Token absent, invalide ou expiré"""

    def __init__(self, message, category='unauthorized'):
        super().__init__(message)
        self.message = message
        self.category = category


# =============================================
# TOKENS
# =============================================

def _access_secret():
    return current_app.config['JWT_SECRET']


def _refresh_secret():
    return current_app.config.get('JWT_REFRESH_SECRET') or current_app.config['JWT_SECRET']


def generate_access_token(user):
    expires = datetime.utcnow() + timedelta(minutes=current_app.config.get('JWT_EXPIRES_MINUTES', 60 * 24))
    payload = {
        'id': user.id,
        'email': user.email,
        'role': user.role,
        'type': 'access',
        'iss': JWT_ISSUER,
        'iat': datetime.utcnow(),
        'exp': expires
    }
    return jwt.encode(payload, _access_secret(), algorithm=JWT_ALGORITHM)


def generate_refresh_token(user):
    expires = datetime.utcnow() + timedelta(days=current_app.config.get('JWT_REFRESH_EXPIRES_DAYS', 7))
    payload = {
        'id': user.id,
        'type': 'refresh',
        'jti': uuid.uuid4().hex,
        'iss': JWT_ISSUER,
        'exp': expires
    }
    return jwt.encode(payload, _refresh_secret(), algorithm=JWT_ALGORITHM)


def decode_access_token(token):
    try:
        payload = jwt.decode(token, _access_secret(), algorithms=[JWT_ALGORITHM], issuer=JWT_ISSUER)
    except ExpiredSignatureError:
        raise AuthError('Token expiré')
    except JWTError:
        raise AuthError('Token invalide')

    if payload.get('type') != 'access' or 'id' not in payload:
        raise AuthError('Token invalide')
    return payload


def decode_refresh_token(token):
    try:
        payload = jwt.decode(token, _refresh_secret(), algorithms=[JWT_ALGORITHM], issuer=JWT_ISSUER)
    except JWTError:
        raise AuthError('Token de rafraîchissement invalide')

    if payload.get('type') != 'refresh' or 'id' not in payload:
        raise AuthError('Token de rafraîchissement invalide')
    return payload


def hash_token(token):
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


# =============================================
# SESSIONS PERSISTÉES
# =============================================

def create_auth_session(user, refresh_token):
    """Crée une session pour un refresh token ; commit par l'appelant"""
    auth_session = AuthSession(
        id=str(uuid.uuid4()),
        user_id=user.id,
        refresh_token_hash=hash_token(refresh_token),
        user_agent=(request.headers.get('User-Agent') or '')[:255],
        ip=request.remote_addr,
        expires_at=datetime.utcnow() + timedelta(days=current_app.config.get('JWT_REFRESH_EXPIRES_DAYS', 7))
    )
    db.session.add(auth_session)
    return auth_session


def issue_tokens(user):
    """Génère la paire de tokens et la session associée"""
    access_token = generate_access_token(user)
    refresh_token = generate_refresh_token(user)
    auth_session = create_auth_session(user, refresh_token)
    return {
        'accessToken': access_token,
        'refreshToken': refresh_token,
        'sessionId': auth_session.id
    }


def find_refresh_session(refresh_token):
    """Retourne (user, session) pour un refresh token valide, lève AuthError sinon"""
    payload = decode_refresh_token(refresh_token)

    auth_session = AuthSession.query.filter_by(
        user_id=payload['id'],
        refresh_token_hash=hash_token(refresh_token),
        revoked=False
    ).first()
    if auth_session is None or not auth_session.is_valid():
        raise AuthError('Session invalide')

    user = db.session.get(User, payload['id'])
    if user is None:
        raise AuthError('Utilisateur non trouvé')

    return user, auth_session


def list_active_sessions(user_id):
    now = datetime.utcnow()
    sessions = AuthSession.query.filter(
        AuthSession.user_id == user_id,
        AuthSession.revoked.is_(False),
        AuthSession.expires_at > now
    ).order_by(AuthSession.last_activity.desc()).all()
    return [auth_session.to_dict() for auth_session in sessions]


def revoke_session(user_id, session_id):
    auth_session = db.session.get(AuthSession, session_id)
    if auth_session is None or auth_session.user_id != user_id or auth_session.revoked:
        return {'success': False, 'error': 'not_found', 'message': 'Session non trouvée'}

    auth_session.revoked = True
    db.session.commit()
    print(f"[AUTH] Session {session_id} révoquée pour l'utilisateur {user_id}")
    return {'success': True, 'message': 'Session révoquée avec succès'}


def revoke_all_sessions(user_id):
    count = AuthSession.query.filter_by(user_id=user_id, revoked=False).update({'revoked': True})
    print(f"[AUTH] {count} session(s) révoquée(s) pour l'utilisateur {user_id}")
    return count


def cleanup_expired_sessions():
    """Supprime les sessions expirées ou révoquées"""
    try:
        count = AuthSession.query.filter(
            (AuthSession.expires_at < datetime.utcnow()) | (AuthSession.revoked.is_(True))
        ).delete(synchronize_session=False)
        db.session.commit()
        if count > 0:
            print(f"[AUTH] 🧹 {count} session(s) expirée(s) supprimée(s)")
        return count
    except Exception as e:
        db.session.rollback()
        print(f"[AUTH] ❌ Erreur lors du nettoyage des sessions: {str(e)}")
        return 0


# =============================================
# RÉINITIALISATION DE MOT DE PASSE
# =============================================

def create_password_reset_token(user, hours=1):
    token = secrets.token_urlsafe(32)
    reset_token = PasswordResetToken(
        token=token,
        user_id=user.id,
        expires_at=datetime.utcnow() + timedelta(hours=hours)
    )
    db.session.add(reset_token)
    db.session.commit()
    return token


def reset_password_with_token(token, new_password):
    reset_token = PasswordResetToken.query.filter_by(token=token, used=False).first()
    if reset_token is None or reset_token.expires_at < datetime.utcnow():
        return {'success': False, 'error': 'validation', 'message': 'Lien de réinitialisation invalide ou expiré'}

    user = db.session.get(User, reset_token.user_id)
    if user is None:
        return {'success': False, 'error': 'not_found', 'message': 'Utilisateur non trouvé'}

    user.set_password(new_password)
    reset_token.used = True
    revoke_all_sessions(user.id)
    db.session.commit()

    print(f"[AUTH] ✅ Mot de passe réinitialisé pour {user.email}")
    return {'success': True, 'message': 'Mot de passe réinitialisé avec succès'}


def cleanup_expired_reset_tokens():
    try:
        count = PasswordResetToken.query.filter(
            PasswordResetToken.expires_at < datetime.utcnow()
        ).delete(synchronize_session=False)
        db.session.commit()
        if count > 0:
            print(f"[AUTH] 🧹 {count} token(s) de réinitialisation expiré(s) supprimé(s)")
        return count
    except Exception as e:
        db.session.rollback()
        print(f"[AUTH] ❌ Erreur lors du nettoyage des tokens: {str(e)}")
        return 0


# =============================================
# AUTHENTIFICATION DE LA REQUÊTE
# =============================================

def _bearer_token():
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        return auth_header[7:].strip() or None
    return None


def authenticate_request():
    """
    Charge l'utilisateur courant depuis le token Bearer
    L'utilisateur est relu en base à chaque requête ; si un en-tête
    x-session-id est présent la session doit être active
    """
    token = _bearer_token()
    if not token:
        raise AuthError("Token d'accès requis")

    payload = decode_access_token(token)

    user = db.session.get(User, payload['id'])
    if user is None:
        raise AuthError('Utilisateur non trouvé')
    if not user.is_active():
        raise AuthError('Compte suspendu', 'forbidden')

    session_id = request.headers.get('x-session-id')
    if session_id:
        auth_session = db.session.get(AuthSession, session_id)
        if auth_session is None or auth_session.user_id != user.id or not auth_session.is_valid():
            raise AuthError('Session invalide')
        auth_session.last_activity = datetime.utcnow()
        db.session.commit()
        g.auth_session = auth_session

    return user


def auth_required(view):
    @functools.wraps(view)
    def wrapped_view(*args, **kwargs):
        try:
            g.user = authenticate_request()
        except AuthError as e:
            print(f"[AUTH] ❌ Accès refusé à {request.path}: {e.message}")
            if e.category == 'forbidden':
                return forbidden_response(e.message)
            return unauthorized_response(e.message)
        return view(*args, **kwargs)
    return wrapped_view


def optional_auth(view):
    """Charge l'utilisateur si un token valide est présent, continue sinon"""
    @functools.wraps(view)
    def wrapped_view(*args, **kwargs):
        g.user = None
        if _bearer_token():
            try:
                g.user = authenticate_request()
            except AuthError:
                g.user = None
        return view(*args, **kwargs)
    return wrapped_view


def role_required(*roles):
    def decorator(view):
        @functools.wraps(view)
        def wrapped_view(*args, **kwargs):
            if g.user.role not in roles:
                print(f"[AUTH] 🚫 Accès refusé - {g.user.email} (rôle: {g.user.role}) sur {request.path}")
                return forbidden_response('Permission insuffisante')
            return view(*args, **kwargs)
        return auth_required(wrapped_view)
    return decorator


def client_required(view):
    @functools.wraps(view)
    def wrapped_view(*args, **kwargs):
        if g.user.role != 'client':
            return forbidden_response('Accès réservé aux clients uniquement')
        if g.user.client is None:
            return not_found_response('Profil client non trouvé')
        g.client = g.user.client
        return view(*args, **kwargs)
    return auth_required(wrapped_view)


def vendor_required(view):
    @functools.wraps(view)
    def wrapped_view(*args, **kwargs):
        if g.user.role != 'vendeur':
            print(f"[AUTH] 🚫 Accès refusé - {g.user.email} (rôle: {g.user.role}) tente d'accéder aux routes vendeur")
            return forbidden_response('Accès réservé aux vendeurs uniquement')
        vendeur = db.session.get(Vendor, g.user.id)
        if vendeur is None:
            return not_found_response('Profil vendeur non trouvé')
        g.vendeur = vendeur
        return view(*args, **kwargs)
    return auth_required(wrapped_view)


def admin_required(view):
    return role_required('admin')(view)


def check_ownership(param='user_id'):
    """L'utilisateur doit être le propriétaire de la ressource (les admins passent)"""
    def decorator(view):
        @functools.wraps(view)
        def wrapped_view(*args, **kwargs):
            if g.user.role != 'admin' and kwargs.get(param) != g.user.id:
                return forbidden_response('Accès non autorisé à cette ressource')
            return view(*args, **kwargs)
        return wrapped_view
    return decorator


# =============================================
# GRADES ET LIMITES VENDEUR
# =============================================

def grade_minimum(niveau):
    """À placer sous vendor_required"""
    def decorator(view):
        @functools.wraps(view)
        def wrapped_view(*args, **kwargs):
            grade = g.vendeur.grade
            if grade is None or grade.niveau < niveau:
                requis = GRADES_NOMS.get(niveau, str(niveau))
                actuel = grade.nom if grade else 'aucun'
                print(f"[GRADE] 🚫 Grade insuffisant - Vendeur {g.vendeur.id} ({actuel}) requiert {requis}")
                return forbidden_response(
                    f'Cette fonctionnalité nécessite le grade {requis} minimum. Votre grade actuel: {actuel}'
                )
            return view(*args, **kwargs)
        return wrapped_view
    return decorator


def boutique_limit_status(vendeur):
    count = Boutique.query.filter_by(vendeur_id=vendeur.id).count()
    limite = vendeur.grade.max_boutiques if vendeur.grade else 1
    return count, limite


def product_limit_status(vendeur, boutique_id):
    count = Product.query.filter_by(boutique_id=boutique_id).count()
    limite = vendeur.grade.max_produits_par_boutique if vendeur.grade else 10
    return count, limite


def check_boutique_limit(view):
    """À placer sous vendor_required"""
    @functools.wraps(view)
    def wrapped_view(*args, **kwargs):
        count, limite = boutique_limit_status(g.vendeur)
        if count >= limite:
            print(f"[GRADE] 🚫 Limite boutiques atteinte - Vendeur {g.vendeur.id} ({count}/{limite})")
            return forbidden_response(
                f'Votre grade {g.vendeur.grade.nom} ne permet que {limite} boutique(s). Vous en avez déjà {count}.'
            )
        return view(*args, **kwargs)
    return wrapped_view


def check_product_limit(view):
    """À placer sous vendor_required ; boutique_id lu dans le corps ou l'URL"""
    @functools.wraps(view)
    def wrapped_view(*args, **kwargs):
        data = request.get_json(silent=True) or {}
        boutique_id = kwargs.get('boutique_id') or data.get('boutique_id')
        if not boutique_id:
            return validation_error('ID de boutique requis',
                                    [{'field': 'boutique_id', 'message': 'ID de boutique requis'}])

        count, limite = product_limit_status(g.vendeur, boutique_id)
        if count >= limite:
            print(f"[GRADE] 🚫 Limite produits atteinte - Boutique {boutique_id} ({count}/{limite})")
            return forbidden_response(
                f'Votre grade {g.vendeur.grade.nom} limite à {limite} produits par boutique. '
                f'Cette boutique en a déjà {count}.'
            )
        return view(*args, **kwargs)
    return wrapped_view
