#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
API REST de la marketplace multi-boutiques
Configuration, gestion d'erreurs et routes (auth, catalogue, panier, vendeur, messagerie, statistiques)
"""

from flask import Flask, request, g
import os
import secrets
import traceback
from datetime import datetime

# Configuration pour les variables d'environnement
from dotenv import load_dotenv
load_dotenv()

from models import db, User, AuthSession
from api_response import (success_response, created_response, validation_error, unauthorized_response,
                          not_found_response, server_error_response, error_response, result_response,
                          get_pagination_args, paginate_query)
from auth_helpers import (AuthError, auth_required, optional_auth, client_required, vendor_required,
                          admin_required, check_ownership, grade_minimum, check_boutique_limit,
                          check_product_limit, issue_tokens, generate_access_token, generate_refresh_token,
                          find_refresh_session, hash_token, list_active_sessions, revoke_session,
                          revoke_all_sessions, create_password_reset_token, reset_password_with_token)
from cart_helpers import (get_active_cart, get_cart_summary, check_cart_validity, add_product, remove_line,
                          update_line_quantity, clear_cart, validate_cart, cancel_client_order, get_order,
                          get_order_history, get_vendor_orders, update_vendor_order_status, search_carts,
                          get_global_cart_statistics)
from grade_helpers import (get_all_grades, get_grade_overview, request_promotion, get_vendor_statistics,
                           get_vendor_monthly_statistics, get_vendor_ranking, get_global_report,
                           regenerate_statistics)
from message_helpers import (send_message, reply_to_message, get_message, mark_as_read, archive_message,
                             delete_message, get_conversation, list_conversations, count_unread,
                             mark_conversation_read, inbox_query, sent_query)
from db_helpers import *
from email_config import send_password_reset_email

API_VERSION = '1.0.0'


def _database_url():
    """URL de la base ; adapte les schémas postgres/mysql aux drivers installés"""
    database_url = os.environ.get('DATABASE_URL')
    if not database_url:
        if os.environ.get('TESTING'):
            return 'sqlite://'
        basedir = os.path.abspath(os.path.dirname(__file__))
        return f'sqlite:///{os.path.join(basedir, "marketplace.db")}'

    if database_url.startswith('postgres://'):
        database_url = database_url.replace('postgres://', 'postgresql+psycopg://', 1)
    elif database_url.startswith('postgresql://'):
        database_url = database_url.replace('postgresql://', 'postgresql+psycopg://', 1)
    elif database_url.startswith('mysql://'):
        database_url = database_url.replace('mysql://', 'mysql+pymysql://', 1)
    return database_url


app = Flask(__name__)

if os.environ.get('FLASK_ENV') == 'development' or os.environ.get('TESTING'):
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY') or 'dev_secret_key_change_in_production'
    app.config['DEBUG'] = os.environ.get('FLASK_ENV') == 'development'
else:
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY') or secrets.token_hex(32)
    app.config['DEBUG'] = False

app.config['TESTING'] = bool(os.environ.get('TESTING'))
app.config['SQLALCHEMY_DATABASE_URI'] = _database_url()
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

app.config['JWT_SECRET'] = os.environ.get('JWT_SECRET') or app.config['SECRET_KEY']
app.config['JWT_REFRESH_SECRET'] = os.environ.get('JWT_REFRESH_SECRET') or app.config['JWT_SECRET']
app.config['JWT_EXPIRES_MINUTES'] = int(os.environ.get('JWT_EXPIRES_MINUTES', 60 * 24))
app.config['JWT_REFRESH_EXPIRES_DAYS'] = int(os.environ.get('JWT_REFRESH_EXPIRES_DAYS', 7))

app.json.ensure_ascii = False

print(f"🔗 Database URL configurée: {app.config['SQLALCHEMY_DATABASE_URI'][:50]}...")

# Initialiser SQLAlchemy
db.init_app(app)


def _json_body():
    return request.get_json(silent=True) or {}


def _server_error(action, error):
    """Rollback, trace console et 500 générique"""
    db.session.rollback()
    print(f"❌ Erreur lors de {action}: {str(error)}")
    traceback.print_exc()
    return server_error_response(f'Erreur lors de {action}')


def _parse_date(value):
    if not value:
        return None
    return datetime.strptime(value, '%Y-%m-%d').date()


def _date_range_args():
    """date_debut/date_fin (AAAA-MM-JJ) de la query string ; ValueError si le format est invalide"""
    return _parse_date(request.args.get('date_debut')), _parse_date(request.args.get('date_fin'))


def _datetime_bounds(date_debut, date_fin):
    if not (date_debut and date_fin):
        return None, None
    return datetime.combine(date_debut, datetime.min.time()), datetime.combine(date_fin, datetime.max.time())


def _bool_arg(name):
    value = request.args.get(name)
    if value is None:
        return None
    return value.lower() in ('1', 'true', 'oui', 'yes')


DATE_FORMAT_ERROR = [{'field': 'date', 'message': 'Format attendu: AAAA-MM-JJ'}]


# =============================================
# GESTION D'ERREURS
# =============================================

@app.errorhandler(404)
def not_found_error(error):
    return not_found_response('Route non trouvée')


@app.errorhandler(405)
def method_not_allowed_error(error):
    return error_response('Méthode non autorisée pour cette route', 'method_not_allowed')


@app.errorhandler(500)
def internal_error(error):
    db.session.rollback()
    return server_error_response()


# =============================================
# ROUTES GÉNÉRALES
# =============================================

@app.route('/health')
def health():
    try:
        db.session.execute(db.text('SELECT 1'))
        base = 'ok'
    except Exception as e:
        db.session.rollback()
        print(f"⚠️ Base de données indisponible: {e}")
        base = 'indisponible'
    return success_response('Service opérationnel', {'status': 'ok', 'database': base})


@app.route('/api/info')
def api_info():
    return success_response('API Marketplace', {
        'nom': 'Marketplace API',
        'version': API_VERSION,
        'endpoints': {
            'auth': '/api/auth',
            'produits': '/api/produits',
            'categories': '/api/categories',
            'boutiques': '/api/boutiques',
            'templates': '/api/templates',
            'grades': '/api/grades',
            'panier': '/api/panier',
            'client': '/api/client',
            'vendeur': '/api/vendeur',
            'messages': '/api/messages',
            'statistiques': '/api/statistiques',
            'utilisateurs': '/api/utilisateurs'
        }
    })


# =============================================
# AUTHENTIFICATION
# =============================================

def _auth_payload(user, tokens):
    return {
        'user': user.to_dict(include_profile=True),
        'accessToken': tokens['accessToken'],
        'refreshToken': tokens['refreshToken'],
        'sessionId': tokens['sessionId']
    }


@app.route('/api/auth/register', methods=['POST'])
def api_register():
    """Inscription client ou vendeur"""
    try:
        result = register_user(_json_body())
        if not result['success']:
            return result_response(result)

        user = result['user']
        tokens = issue_tokens(user)
        db.session.commit()
        return created_response('Inscription réussie', _auth_payload(user, tokens))
    except Exception as e:
        return _server_error("l'inscription", e)


@app.route('/api/auth/login', methods=['POST'])
def api_login():
    try:
        data = _json_body()
        if not data.get('email') or not data.get('password'):
            return validation_error('Email et mot de passe requis', [
                {'field': 'email', 'message': 'Requis'}, {'field': 'password', 'message': 'Requis'}
            ])

        result = authenticate_user(data['email'], data['password'])
        if not result['success']:
            print(f"[AUTH] ❌ Échec de connexion pour {data['email']}")
            return result_response(result)

        user = result['user']
        tokens = issue_tokens(user)
        db.session.commit()
        print(f"[AUTH] ✅ Connexion de {user.email}")
        return success_response('Connexion réussie', _auth_payload(user, tokens))
    except Exception as e:
        return _server_error('la connexion', e)


@app.route('/api/auth/refresh', methods=['POST'])
def api_refresh_token():
    """Nouveau couple de tokens ; le refresh token précédent est invalidé"""
    try:
        refresh_token = _json_body().get('refreshToken')
        if not refresh_token:
            return validation_error('Refresh token requis', [{'field': 'refreshToken', 'message': 'Requis'}])

        try:
            user, auth_session = find_refresh_session(refresh_token)
        except AuthError as e:
            return unauthorized_response(e.message)
        if not user.is_active():
            return error_response('Compte suspendu', 'forbidden')

        nouveau_refresh = generate_refresh_token(user)
        auth_session.refresh_token_hash = hash_token(nouveau_refresh)
        auth_session.last_activity = datetime.utcnow()
        db.session.commit()

        return success_response('Token rafraîchi avec succès', {
            'accessToken': generate_access_token(user),
            'refreshToken': nouveau_refresh,
            'sessionId': auth_session.id
        })
    except Exception as e:
        return _server_error('le rafraîchissement du token', e)


@app.route('/api/auth/logout', methods=['POST'])
@auth_required
def api_logout():
    try:
        data = _json_body()
        session_id = request.headers.get('x-session-id') or data.get('sessionId')
        if not session_id and data.get('refreshToken'):
            auth_session = AuthSession.query.filter_by(
                user_id=g.user.id, refresh_token_hash=hash_token(data['refreshToken'])
            ).first()
            session_id = auth_session.id if auth_session else None

        if session_id:
            revoke_session(g.user.id, session_id)
        return success_response('Déconnexion réussie')
    except Exception as e:
        return _server_error('la déconnexion', e)


@app.route('/api/auth/me')
@auth_required
def api_me():
    return success_response('Utilisateur récupéré avec succès', {'user': g.user.to_dict(include_profile=True)})


@app.route('/api/auth/validate-token')
@auth_required
def api_validate_token():
    return success_response('Token valide', {'valid': True, 'user': g.user.to_dict()})


@app.route('/api/auth/check-email/<path:email>')
def api_check_email(email):
    disponible = is_email_available(email)
    return success_response('Email disponible' if disponible else 'Email déjà utilisé',
                            {'email': email.strip().lower(), 'disponible': disponible})


@app.route('/api/auth/profile', methods=['PUT'])
@auth_required
def api_update_profile():
    try:
        return result_response(update_user_profile(g.user, _json_body()))
    except Exception as e:
        return _server_error('la mise à jour du profil', e)


@app.route('/api/auth/change-password', methods=['PUT'])
@auth_required
def api_change_password():
    try:
        data = _json_body()
        return result_response(change_password(g.user, data.get('ancien_password'), data.get('nouveau_password')))
    except Exception as e:
        return _server_error('le changement de mot de passe', e)


@app.route('/api/auth/delete-account', methods=['DELETE'])
@auth_required
def api_delete_account():
    try:
        return result_response(delete_user_account(g.user, _json_body().get('password')))
    except Exception as e:
        return _server_error('la suppression du compte', e)


@app.route('/api/auth/sessions')
@auth_required
def api_list_sessions():
    sessions = list_active_sessions(g.user.id)
    return success_response('Sessions actives', {'sessions': sessions, 'total': len(sessions)})


@app.route('/api/auth/sessions', methods=['DELETE'])
@auth_required
def api_revoke_all_sessions():
    try:
        count = revoke_all_sessions(g.user.id)
        db.session.commit()
        return success_response(f'{count} session(s) révoquée(s)', {'sessions_revoquees': count})
    except Exception as e:
        return _server_error('la révocation des sessions', e)


@app.route('/api/auth/sessions/<session_id>', methods=['DELETE'])
@auth_required
def api_revoke_session(session_id):
    try:
        return result_response(revoke_session(g.user.id, session_id))
    except Exception as e:
        return _server_error('la révocation de la session', e)


@app.route('/api/auth/forgot-password', methods=['POST'])
def api_forgot_password():
    """Réponse identique que l'email existe ou non"""
    try:
        email = (_json_body().get('email') or '').strip().lower()
        if not email:
            return validation_error('Email requis', [{'field': 'email', 'message': 'Requis'}])

        user = get_user_by_email(email)
        if user is not None and user.is_active():
            token = create_password_reset_token(user)
            send_password_reset_email(user.email, user.nom, token)
            print(f"[AUTH] Demande de réinitialisation pour {user.email}")

        return success_response('Si un compte existe pour cet email, un lien de réinitialisation a été envoyé')
    except Exception as e:
        return _server_error('la demande de réinitialisation', e)


@app.route('/api/auth/reset-password', methods=['POST'])
def api_reset_password():
    try:
        data = _json_body()
        password = data.get('password') or ''
        if not data.get('token'):
            return validation_error('Token requis', [{'field': 'token', 'message': 'Requis'}])
        if len(password) < 6:
            return validation_error('Mot de passe trop court', [{'field': 'password', 'message': '6 caractères minimum'}])
        return result_response(reset_password_with_token(data['token'], password))
    except Exception as e:
        return _server_error('la réinitialisation du mot de passe', e)


# =============================================
# PRODUITS (CATALOGUE PUBLIC)
# =============================================

def _product_search_criteria():
    return {
        'search': request.args.get('search'),
        'categorie': request.args.get('categorie', type=int),
        'boutique_id': request.args.get('boutique_id', type=int),
        'prix_min': request.args.get('prix_min', type=float),
        'prix_max': request.args.get('prix_max', type=float),
        'disponibles_uniquement': _bool_arg('disponibles'),
        'tri': request.args.get('tri')
    }


@app.route('/api/produits')
def api_products():
    """Recherche paginée des produits actifs"""
    try:
        page, limit = get_pagination_args()
        return result_response(search_products(_product_search_criteria(), page, limit))
    except Exception as e:
        return _server_error('la recherche des produits', e)


@app.route('/api/produits/populaires')
def api_popular_products():
    try:
        limite = min(request.args.get('limite', 10, type=int), 50)
        jours = request.args.get('jours', 30, type=int)
        return result_response(get_popular_products(limite, jours))
    except Exception as e:
        return _server_error('la récupération des produits populaires', e)


@app.route('/api/produits/recommandations')
@client_required
def api_recommendations():
    try:
        limite = min(request.args.get('limite', 10, type=int), 50)
        return result_response(get_recommendations(g.client.id, limite))
    except Exception as e:
        return _server_error('la récupération des recommandations', e)


@app.route('/api/produits/<int:product_id>')
def api_product_detail(product_id):
    try:
        return result_response(get_product_detail(product_id))
    except Exception as e:
        return _server_error('la récupération du produit', e)


@app.route('/api/produits/<int:product_id>/images')
def api_product_images(product_id):
    return result_response(get_product_images(product_id))


# =============================================
# CATÉGORIES
# =============================================

@app.route('/api/categories')
def api_categories():
    try:
        if _bool_arg('arbre'):
            return success_response('Arborescence des catégories', {'categories': get_category_tree()})

        actives = _bool_arg('actives')
        categories = get_all_categories(
            active_only=True if actives is None else actives,
            parent_id=request.args.get('parent_id', type=int),
            search=request.args.get('search')
        )
        return success_response('Catégories récupérées avec succès', {'categories': categories, 'total': len(categories)})
    except Exception as e:
        return _server_error('la récupération des catégories', e)


@app.route('/api/categories/<int:category_id>')
def api_category_detail(category_id):
    return result_response(get_category_detail(category_id))


@app.route('/api/categories/<int:category_id>/produits')
def api_category_products(category_id):
    try:
        if get_category_by_id(category_id) is None:
            return not_found_response('Catégorie non trouvée')
        page, limit = get_pagination_args()
        criteres = _product_search_criteria()
        criteres['categorie'] = category_id
        return result_response(search_products(criteres, page, limit))
    except Exception as e:
        return _server_error('la récupération des produits de la catégorie', e)


@app.route('/api/categories', methods=['POST'])
@admin_required
def api_create_category():
    try:
        return result_response(create_category(_json_body()), 201)
    except Exception as e:
        return _server_error('la création de la catégorie', e)


@app.route('/api/categories/ordre', methods=['PUT'])
@admin_required
def api_reorder_categories():
    try:
        return result_response(reorder_categories(_json_body().get('ordres')))
    except Exception as e:
        return _server_error('la réorganisation des catégories', e)


@app.route('/api/categories/<int:category_id>', methods=['PUT'])
@admin_required
def api_update_category(category_id):
    try:
        return result_response(update_category(category_id, _json_body()))
    except Exception as e:
        return _server_error('la mise à jour de la catégorie', e)


@app.route('/api/categories/<int:category_id>/statut', methods=['PUT'])
@admin_required
def api_category_status(category_id):
    try:
        return result_response(change_category_status(category_id, _json_body().get('statut')))
    except Exception as e:
        return _server_error('le changement de statut de la catégorie', e)


@app.route('/api/categories/<int:category_id>', methods=['DELETE'])
@admin_required
def api_delete_category(category_id):
    try:
        return result_response(delete_category(category_id))
    except Exception as e:
        return _server_error('la suppression de la catégorie', e)


# =============================================
# BOUTIQUES, TEMPLATES ET GRADES (PUBLIC)
# =============================================

@app.route('/api/boutiques')
def api_boutiques():
    try:
        page, limit = get_pagination_args()
        return result_response(list_boutiques(
            search=request.args.get('search'),
            vendeur_id=request.args.get('vendeur_id', type=int),
            page=page, limit=limit
        ))
    except Exception as e:
        return _server_error('la récupération des boutiques', e)


@app.route('/api/boutiques/<int:boutique_id>')
@optional_auth
def api_boutique_detail(boutique_id):
    """Les visites du propriétaire ne sont pas comptées"""
    try:
        boutique = get_boutique_by_id(boutique_id)
        proprietaire = boutique is not None and g.user is not None and g.user.id == boutique.vendeur_id
        return result_response(get_boutique_detail(boutique_id, count_visit=not proprietaire))
    except Exception as e:
        return _server_error('la récupération de la boutique', e)


@app.route('/api/boutiques/<int:boutique_id>/produits')
def api_boutique_products(boutique_id):
    try:
        boutique = get_boutique_by_id(boutique_id)
        if boutique is None or boutique.statut != 'active':
            return not_found_response('Boutique non trouvée')
        page, limit = get_pagination_args()
        criteres = _product_search_criteria()
        criteres['boutique_id'] = boutique_id
        return result_response(search_products(criteres, page, limit))
    except Exception as e:
        return _server_error('la récupération des produits de la boutique', e)


@app.route('/api/templates')
def api_templates():
    templates = get_all_templates()
    return success_response('Templates récupérés avec succès', {'templates': templates, 'total': len(templates)})


@app.route('/api/templates/<int:template_id>')
def api_template_detail(template_id):
    template = get_template_by_id(template_id)
    if template is None:
        return not_found_response('Template non trouvé')
    return success_response('Template récupéré avec succès', {'template': template.to_dict()})


@app.route('/api/templates/grade/<int:grade_id>')
def api_templates_for_grade(grade_id):
    grade = db.session.get(SellerGrade, grade_id)
    if grade is None:
        return not_found_response('Grade non trouvé')
    templates = get_templates_for_grade(grade)
    return success_response(f'Templates disponibles pour le grade {grade.nom}',
                            {'grade': grade.nom, 'templates': templates})


@app.route('/api/templates/disponibles')
@vendor_required
def api_available_templates():
    return result_response(get_available_templates(g.vendeur))


@app.route('/api/templates', methods=['POST'])
@admin_required
def api_create_template():
    try:
        return result_response(create_template(_json_body()), 201)
    except Exception as e:
        return _server_error('la création du template', e)


@app.route('/api/grades')
def api_grades():
    grades = get_all_grades()
    return success_response('Grades récupérés avec succès', {'grades': grades})


# =============================================
# PANIER
# =============================================

@app.route('/api/panier')
@client_required
def api_get_cart():
    try:
        return result_response(get_cart_summary(get_active_cart(g.client.id)))
    except Exception as e:
        return _server_error('la récupération du panier', e)


@app.route('/api/panier/validite')
@client_required
def api_cart_validity():
    try:
        validite = check_cart_validity(get_active_cart(g.client.id))
        return success_response(validite['message'], {
            'est_valide': validite['est_valide'],
            'erreurs': validite['erreurs'],
            'avertissements': validite['avertissements']
        })
    except Exception as e:
        return _server_error('la vérification du panier', e)


@app.route('/api/panier/lignes', methods=['POST'])
@client_required
def api_cart_add_line():
    """Ajouter un produit au panier"""
    try:
        data = _json_body()
        if not data.get('produit_id'):
            return validation_error('Produit requis', [{'field': 'produit_id', 'message': 'Requis'}])
        cart = get_active_cart(g.client.id)
        return result_response(add_product(cart, data['produit_id'], data.get('quantite', 1)), 201)
    except Exception as e:
        return _server_error("l'ajout au panier", e)


@app.route('/api/panier/lignes/<int:line_id>', methods=['PUT'])
@client_required
def api_cart_update_line(line_id):
    try:
        cart = get_active_cart(g.client.id)
        return result_response(update_line_quantity(cart, line_id, _json_body().get('quantite')))
    except Exception as e:
        return _server_error('la mise à jour de la ligne', e)


@app.route('/api/panier/lignes/<int:line_id>', methods=['DELETE'])
@client_required
def api_cart_remove_line(line_id):
    try:
        return result_response(remove_line(get_active_cart(g.client.id), line_id))
    except Exception as e:
        return _server_error('la suppression de la ligne', e)


@app.route('/api/panier', methods=['DELETE'])
@client_required
def api_clear_cart():
    try:
        return result_response(clear_cart(get_active_cart(g.client.id)))
    except Exception as e:
        return _server_error('le vidage du panier', e)


@app.route('/api/panier/valider', methods=['POST'])
@client_required
def api_validate_cart():
    """Transforme le panier actif en commande"""
    try:
        result = validate_cart(get_active_cart(g.client.id), _json_body())
        return result_response(result, 201)
    except Exception as e:
        return _server_error('la validation du panier', e)


# =============================================
# ESPACE CLIENT
# =============================================

@app.route('/api/client/profil')
@client_required
def api_client_profile():
    return success_response('Profil récupéré avec succès', {'profil': get_client_profile(g.client)})


@app.route('/api/client/profil', methods=['PUT'])
@client_required
def api_update_client_profile():
    try:
        return result_response(update_client_profile(g.client, _json_body()))
    except Exception as e:
        return _server_error('la mise à jour du profil client', e)


@app.route('/api/client/dashboard')
@client_required
def api_client_dashboard():
    try:
        return success_response('Tableau de bord client', get_client_dashboard(g.client))
    except Exception as e:
        return _server_error('la récupération du tableau de bord', e)


@app.route('/api/client/commandes')
@client_required
def api_client_orders():
    try:
        try:
            date_debut, date_fin = _date_range_args()
        except ValueError:
            return validation_error('Dates invalides', DATE_FORMAT_ERROR)
        debut, fin = _datetime_bounds(date_debut, date_fin)
        return result_response(get_order_history(
            g.client.id,
            statut=request.args.get('statut'),
            date_debut=debut, date_fin=fin,
            limit=min(request.args.get('limit', 50, type=int), 100)
        ))
    except Exception as e:
        return _server_error("la récupération de l'historique", e)


@app.route('/api/client/commandes/<int:cart_id>')
@client_required
def api_client_order(cart_id):
    return result_response(get_order(g.client.id, cart_id))


@app.route('/api/client/commandes/<int:cart_id>/annuler', methods=['POST'])
@client_required
def api_client_cancel_order(cart_id):
    try:
        return result_response(cancel_client_order(g.client.id, cart_id))
    except Exception as e:
        return _server_error("l'annulation de la commande", e)


# =============================================
# ESPACE VENDEUR - PROFIL ET BOUTIQUES
# =============================================

@app.route('/api/vendeur/profil')
@vendor_required
def api_vendor_profile():
    return success_response('Profil récupéré avec succès', {'profil': get_vendor_profile(g.vendeur)})


@app.route('/api/vendeur/profil', methods=['PUT'])
@vendor_required
def api_update_vendor_profile():
    try:
        return result_response(update_vendor_profile(g.vendeur, _json_body()))
    except Exception as e:
        return _server_error('la mise à jour du profil vendeur', e)


@app.route('/api/vendeur/dashboard')
@vendor_required
def api_vendor_dashboard():
    try:
        return success_response('Tableau de bord vendeur', get_vendor_dashboard(g.vendeur))
    except Exception as e:
        return _server_error('la récupération du tableau de bord', e)


@app.route('/api/vendeur/boutiques')
@vendor_required
def api_vendor_boutiques():
    boutiques = [boutique.to_dict() for boutique in g.vendeur.boutiques]
    count, limite = boutique_limit_status(g.vendeur)
    return success_response('Boutiques récupérées avec succès', {
        'boutiques': boutiques,
        'limite': {'actuel': count, 'maximum': limite}
    })


@app.route('/api/vendeur/boutiques', methods=['POST'])
@vendor_required
@check_boutique_limit
def api_create_boutique():
    try:
        return result_response(create_boutique(g.vendeur, _json_body()), 201)
    except Exception as e:
        return _server_error('la création de la boutique', e)


@app.route('/api/vendeur/boutiques/<int:boutique_id>')
@vendor_required
def api_vendor_boutique(boutique_id):
    try:
        boutique, error = get_owned_boutique(g.vendeur, boutique_id)
        if error:
            return result_response(error)
        statistiques = get_boutique_statistics(g.vendeur, boutique_id)
        return success_response('Boutique récupérée avec succès', {
            'boutique': boutique.to_dict(),
            'statistiques': statistiques['statistiques']
        })
    except Exception as e:
        return _server_error('la récupération de la boutique', e)


@app.route('/api/vendeur/boutiques/<int:boutique_id>', methods=['PUT'])
@vendor_required
def api_update_boutique(boutique_id):
    try:
        return result_response(update_boutique(g.vendeur, boutique_id, _json_body()))
    except Exception as e:
        return _server_error('la mise à jour de la boutique', e)


@app.route('/api/vendeur/boutiques/<int:boutique_id>/template', methods=['PUT'])
@vendor_required
def api_boutique_template(boutique_id):
    try:
        return result_response(change_boutique_template(g.vendeur, boutique_id, _json_body().get('template_id')))
    except Exception as e:
        return _server_error('le changement de template', e)


@app.route('/api/vendeur/boutiques/<int:boutique_id>', methods=['DELETE'])
@vendor_required
def api_delete_boutique(boutique_id):
    try:
        return result_response(delete_boutique(g.vendeur, boutique_id))
    except Exception as e:
        return _server_error('la suppression de la boutique', e)


# =============================================
# ESPACE VENDEUR - PRODUITS, STOCK ET IMAGES
# =============================================

@app.route('/api/vendeur/produits')
@vendor_required
def api_vendor_products():
    try:
        page, limit = get_pagination_args()
        return result_response(list_vendor_products(
            g.vendeur,
            boutique_id=request.args.get('boutique_id', type=int),
            statut=request.args.get('statut'),
            page=page, limit=limit
        ))
    except Exception as e:
        return _server_error('la récupération des produits', e)


@app.route('/api/vendeur/produits', methods=['POST'])
@vendor_required
@check_product_limit
def api_create_product():
    try:
        return result_response(create_product(g.vendeur, _json_body()), 201)
    except Exception as e:
        return _server_error('la création du produit', e)


@app.route('/api/vendeur/produits/<int:product_id>')
@vendor_required
def api_vendor_product(product_id):
    produit, error = get_owned_product(g.vendeur, product_id)
    if error:
        return result_response(error)
    return success_response('Produit récupéré avec succès', {'produit': produit.to_dict(detailed=True)})


@app.route('/api/vendeur/produits/<int:product_id>', methods=['PUT'])
@vendor_required
def api_update_product(product_id):
    try:
        return result_response(update_product(g.vendeur, product_id, _json_body()))
    except Exception as e:
        return _server_error('la mise à jour du produit', e)


@app.route('/api/vendeur/produits/<int:product_id>', methods=['DELETE'])
@vendor_required
def api_delete_product(product_id):
    try:
        return result_response(delete_product(g.vendeur, product_id))
    except Exception as e:
        return _server_error('la suppression du produit', e)


@app.route('/api/vendeur/produits/<int:product_id>/stock', methods=['PUT'])
@vendor_required
def api_set_stock(product_id):
    try:
        data = _json_body()
        if 'stock' not in data:
            return validation_error('Stock requis', [{'field': 'stock', 'message': 'Requis'}])
        return result_response(set_product_stock(g.vendeur, product_id, data['stock']))
    except Exception as e:
        return _server_error('la mise à jour du stock', e)


@app.route('/api/vendeur/produits/<int:product_id>/stock/reserver', methods=['POST'])
@vendor_required
def api_reserve_stock(product_id):
    try:
        return result_response(reserve_product_stock(g.vendeur, product_id, _json_body().get('quantite')))
    except Exception as e:
        return _server_error('la réservation du stock', e)


@app.route('/api/vendeur/produits/<int:product_id>/stock/liberer', methods=['POST'])
@vendor_required
def api_release_stock(product_id):
    try:
        return result_response(release_product_stock(g.vendeur, product_id, _json_body().get('quantite')))
    except Exception as e:
        return _server_error('la libération du stock', e)


@app.route('/api/vendeur/stock')
@vendor_required
def api_stock_report():
    rapport = stock_report(g.vendeur)
    return success_response('Rapport de stock', {
        'rapport': rapport,
        'resume': {cle: len(produits) for cle, produits in rapport.items()}
    })


@app.route('/api/vendeur/produits/<int:product_id>/images', methods=['POST'])
@vendor_required
def api_add_product_image(product_id):
    try:
        return result_response(add_product_image(g.vendeur, product_id, _json_body()), 201)
    except Exception as e:
        return _server_error("l'ajout de l'image", e)


@app.route('/api/vendeur/produits/<int:product_id>/images/<int:image_id>/principale', methods=['PUT'])
@vendor_required
def api_set_primary_image(product_id, image_id):
    try:
        return result_response(set_product_primary_image(g.vendeur, product_id, image_id))
    except Exception as e:
        return _server_error("la définition de l'image principale", e)


@app.route('/api/vendeur/produits/<int:product_id>/images/<int:image_id>', methods=['DELETE'])
@vendor_required
def api_remove_product_image(product_id, image_id):
    try:
        return result_response(remove_product_image(g.vendeur, product_id, image_id))
    except Exception as e:
        return _server_error("la suppression de l'image", e)


# =============================================
# ESPACE VENDEUR - COMMANDES, GRADE ET STATISTIQUES
# =============================================

@app.route('/api/vendeur/commandes')
@vendor_required
def api_vendor_orders():
    try:
        return result_response(get_vendor_orders(
            g.vendeur.id,
            statut=request.args.get('statut'),
            limit=min(request.args.get('limit', 50, type=int), 100)
        ))
    except Exception as e:
        return _server_error('la récupération des commandes', e)


@app.route('/api/vendeur/commandes/<int:cart_id>/statut', methods=['PUT'])
@vendor_required
def api_vendor_order_status(cart_id):
    try:
        return result_response(update_vendor_order_status(g.vendeur, cart_id, _json_body().get('statut')))
    except Exception as e:
        return _server_error('le changement de statut de la commande', e)


@app.route('/api/vendeur/grade')
@vendor_required
def api_vendor_grade():
    try:
        return result_response(get_grade_overview(g.vendeur))
    except Exception as e:
        return _server_error('la récupération du grade', e)


@app.route('/api/vendeur/grade/promotion', methods=['POST'])
@vendor_required
def api_request_promotion():
    try:
        return result_response(request_promotion(g.vendeur))
    except Exception as e:
        return _server_error('la demande de promotion', e)


@app.route('/api/vendeur/statistiques')
@vendor_required
def api_vendor_statistics():
    try:
        try:
            date_debut, date_fin = _date_range_args()
        except ValueError:
            return validation_error('Dates invalides', DATE_FORMAT_ERROR)
        return result_response(get_vendor_statistics(
            g.vendeur.id,
            periode=request.args.get('periode'),
            date_debut=date_debut, date_fin=date_fin
        ))
    except Exception as e:
        return _server_error('la récupération des statistiques', e)


@app.route('/api/vendeur/statistiques/mensuelles')
@vendor_required
@grade_minimum(2)
def api_vendor_monthly_statistics():
    """Statistiques détaillées mensuelles (à partir du grade Argent)"""
    try:
        mois = min(max(request.args.get('mois', 12, type=int), 1), 24)
        return result_response(get_vendor_monthly_statistics(g.vendeur.id, mois))
    except Exception as e:
        return _server_error('la récupération des statistiques mensuelles', e)


# =============================================
# MESSAGERIE
# =============================================

@app.route('/api/messages', methods=['POST'])
@auth_required
def api_send_message():
    try:
        return result_response(send_message(g.user.id, _json_body()), 201)
    except Exception as e:
        return _server_error("l'envoi du message", e)


@app.route('/api/messages')
@auth_required
def api_inbox():
    """Boîte de réception paginée"""
    try:
        page, limit = get_pagination_args()
        query = inbox_query(
            g.user.id,
            lu=_bool_arg('lu'),
            type_message=request.args.get('type'),
            include_archived=bool(_bool_arg('archives'))
        )
        messages, pagination = paginate_query(query, page, limit)
        return success_response('Messages récupérés avec succès', {
            'messages': [message.to_dict() for message in messages],
            'non_lus': count_unread(g.user.id),
            'pagination': pagination
        })
    except Exception as e:
        return _server_error('la récupération des messages', e)


@app.route('/api/messages/envoyes')
@auth_required
def api_sent_messages():
    try:
        page, limit = get_pagination_args()
        messages, pagination = paginate_query(sent_query(g.user.id), page, limit)
        return success_response('Messages envoyés récupérés avec succès', {
            'messages': [message.to_dict() for message in messages],
            'pagination': pagination
        })
    except Exception as e:
        return _server_error('la récupération des messages envoyés', e)


@app.route('/api/messages/conversations')
@auth_required
def api_conversations():
    try:
        limit = min(request.args.get('limit', 20, type=int), 100)
        return result_response(list_conversations(g.user.id, limit))
    except Exception as e:
        return _server_error('la récupération des conversations', e)


@app.route('/api/messages/conversations/<conversation_id>')
@auth_required
def api_conversation(conversation_id):
    return result_response(get_conversation(conversation_id, g.user.id))


@app.route('/api/messages/conversations/<conversation_id>/lu', methods=['PUT'])
@auth_required
def api_conversation_read(conversation_id):
    try:
        return result_response(mark_conversation_read(conversation_id, g.user.id))
    except Exception as e:
        return _server_error('le marquage de la conversation', e)


@app.route('/api/messages/non-lus')
@auth_required
def api_unread_count():
    return success_response('Nombre de messages non lus', {'non_lus': count_unread(g.user.id)})


@app.route('/api/messages/<int:message_id>')
@auth_required
def api_get_message(message_id):
    try:
        return result_response(get_message(message_id, g.user.id))
    except Exception as e:
        return _server_error('la récupération du message', e)


@app.route('/api/messages/<int:message_id>/repondre', methods=['POST'])
@auth_required
def api_reply_message(message_id):
    try:
        return result_response(reply_to_message(message_id, g.user.id, _json_body()), 201)
    except Exception as e:
        return _server_error("l'envoi de la réponse", e)


@app.route('/api/messages/<int:message_id>/lu', methods=['PUT'])
@auth_required
def api_mark_read(message_id):
    try:
        return result_response(mark_as_read(message_id, g.user.id))
    except Exception as e:
        return _server_error('le marquage du message', e)


@app.route('/api/messages/<int:message_id>/archiver', methods=['PUT'])
@auth_required
def api_archive_message(message_id):
    try:
        return result_response(archive_message(message_id, g.user.id))
    except Exception as e:
        return _server_error("l'archivage du message", e)


@app.route('/api/messages/<int:message_id>', methods=['DELETE'])
@auth_required
def api_delete_message(message_id):
    try:
        return result_response(delete_message(message_id, g.user.id))
    except Exception as e:
        return _server_error('la suppression du message', e)


# =============================================
# STATISTIQUES
# =============================================

@app.route('/api/statistiques/classement')
def api_ranking():
    try:
        try:
            date_debut, date_fin = _date_range_args()
        except ValueError:
            return validation_error('Dates invalides', DATE_FORMAT_ERROR)
        return result_response(get_vendor_ranking(
            limite=min(request.args.get('limite', 20, type=int), 100),
            tri=request.args.get('tri', 'chiffre_affaires'),
            date_debut=date_debut, date_fin=date_fin
        ))
    except Exception as e:
        return _server_error('la récupération du classement', e)


@app.route('/api/statistiques/global')
@admin_required
def api_global_report():
    try:
        try:
            date_debut, date_fin = _date_range_args()
        except ValueError:
            return validation_error('Dates invalides', DATE_FORMAT_ERROR)
        return result_response(get_global_report(date_debut, date_fin))
    except Exception as e:
        return _server_error('la génération du rapport global', e)


@app.route('/api/statistiques/paniers')
@admin_required
def api_cart_statistics():
    try:
        try:
            date_debut, date_fin = _date_range_args()
        except ValueError:
            return validation_error('Dates invalides', DATE_FORMAT_ERROR)
        debut, fin = _datetime_bounds(date_debut, date_fin)
        if request.args.get('statut') or request.args.get('client_id'):
            page, limit = get_pagination_args()
            result = search_carts({
                'statut': request.args.get('statut'),
                'client_id': request.args.get('client_id', type=int),
                'date_debut': debut, 'date_fin': fin,
                'tri': request.args.get('tri')
            }, page, limit)
            return success_response(result['message'], {
                'paniers': result['paniers'],
                'pagination': pagination_meta(page, limit, result['total'])
            })
        return result_response(get_global_cart_statistics(debut, fin))
    except Exception as e:
        return _server_error('la récupération des statistiques paniers', e)


@app.route('/api/statistiques/regenerer', methods=['POST'])
@admin_required
def api_regenerate_statistics():
    try:
        data = _json_body()
        try:
            date_debut = _parse_date(data.get('date_debut'))
            date_fin = _parse_date(data.get('date_fin'))
        except ValueError:
            return validation_error('Dates invalides', DATE_FORMAT_ERROR)
        return result_response(regenerate_statistics(date_debut, date_fin))
    except Exception as e:
        return _server_error('la régénération des statistiques', e)


# =============================================
# ADMINISTRATION DES UTILISATEURS
# =============================================

@app.route('/api/utilisateurs')
@admin_required
def api_users():
    try:
        page, limit = get_pagination_args()
        return result_response(list_users(
            role=request.args.get('role'),
            statut=request.args.get('statut'),
            search=request.args.get('search'),
            page=page, limit=limit
        ))
    except Exception as e:
        return _server_error('la récupération des utilisateurs', e)


@app.route('/api/utilisateurs/<int:user_id>')
@auth_required
@check_ownership('user_id')
def api_user_detail(user_id):
    """Un utilisateur consulte sa fiche, l'administrateur toutes les fiches"""
    user = get_user_by_id(user_id)
    if user is None:
        return not_found_response('Utilisateur non trouvé')
    return success_response('Utilisateur récupéré avec succès', {'utilisateur': user.to_dict(include_profile=True)})


@app.route('/api/utilisateurs/<int:user_id>/statut', methods=['PUT'])
@admin_required
def api_user_status(user_id):
    try:
        return result_response(change_user_status(g.user, user_id, _json_body().get('statut')))
    except Exception as e:
        return _server_error('le changement de statut', e)


@app.route('/api/utilisateurs/<int:user_id>', methods=['DELETE'])
@admin_required
def api_delete_user(user_id):
    try:
        return result_response(delete_user_by_admin(g.user, user_id))
    except Exception as e:
        return _server_error("la suppression de l'utilisateur", e)


# =============================================
# INITIALISATION DE LA BASE
# =============================================

def initialize_database():
    """Tables, grades, templates et catégories par défaut, compte administrateur"""
    from grade_helpers import seed_default_grades

    with app.app_context():
        print("🔄 Initialisation de la base de données...")
        db.create_all()
        print("✅ Tables de base de données créées")

        seed_default_grades()
        seed_default_templates()
        seed_default_categories()

        admin_email = (os.environ.get('ADMIN_EMAIL') or '').strip().lower()
        admin_password = os.environ.get('ADMIN_PASSWORD')
        admin_name = os.environ.get('ADMIN_NAME') or 'Administrateur'

        if not (admin_email and admin_password):
            print("⚠️ ADMIN_EMAIL / ADMIN_PASSWORD non définis, aucun compte administrateur créé")
        elif get_user_by_email(admin_email) is None:
            admin = User(nom=admin_name, email=admin_email, role='admin', statut='actif')
            admin.set_password(admin_password)
            db.session.add(admin)
            db.session.commit()
            print(f"✅ Compte administrateur créé: {admin_email}")
        else:
            print(f"ℹ️ Compte administrateur existe déjà: {admin_email}")

        print("✅ Base de données initialisée avec succès")
