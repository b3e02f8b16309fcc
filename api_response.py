#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Réponses API standardisées
Enveloppe commune : {success, message, data?, timestamp}
Les erreurs ajoutent 'error' (catégorie) et éventuellement 'errors' [{field, message}]
"""

from flask import jsonify, request
from datetime import datetime
import math

# Libellés et codes HTTP par catégorie d'erreur métier
ERROR_CATEGORIES = {
    'validation': ('Erreur de validation', 400),
    'unauthorized': ('Non autorisé', 401),
    'forbidden': ('Accès interdit', 403),
    'not_found': ('Non trouvé', 404),
    'method_not_allowed': ('Méthode non autorisée', 405),
    'conflict': ('Conflit', 409),
    'server': ('Erreur serveur', 500),
}

# Clés des dicts de résultat qui ne font pas partie des données
RESULT_META_KEYS = ('success', 'message', 'error', 'errors')

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100


def _timestamp():
    return datetime.utcnow().isoformat() + 'Z'


def success_response(message, data=None, status_code=200):
    payload = {
        'success': True,
        'message': message,
        'timestamp': _timestamp()
    }
    if data is not None:
        payload['data'] = data
    return jsonify(payload), status_code


def created_response(message, data=None):
    return success_response(message, data, 201)


def error_response(message, category='server', errors=None):
    label, status_code = ERROR_CATEGORIES.get(category, ERROR_CATEGORIES['server'])
    payload = {
        'success': False,
        'error': label,
        'message': message,
        'timestamp': _timestamp()
    }
    if errors:
        payload['errors'] = errors
    return jsonify(payload), status_code


def validation_error(message, errors=None):
    return error_response(message, 'validation', errors)


def unauthorized_response(message='Authentification requise'):
    return error_response(message, 'unauthorized')


def forbidden_response(message='Accès interdit'):
    return error_response(message, 'forbidden')


def not_found_response(message='Ressource non trouvée'):
    return error_response(message, 'not_found')


def server_error_response(message='Erreur interne du serveur'):
    return error_response(message, 'server')


def result_response(result, success_status=200):
    """
    Traduit un dict de résultat {'success', 'message', 'error'?, ...} en réponse HTTP
    'data' est repris tel quel s'il est présent, sinon les clés restantes du résultat
    """
    if result.get('success'):
        if 'data' in result:
            data = result['data']
        else:
            data = {key: value for key, value in result.items() if key not in RESULT_META_KEYS}
        return success_response(result.get('message', 'Opération réussie'), data or None, success_status)

    return error_response(
        result.get('message', 'Opération impossible'),
        result.get('error', 'validation'),
        result.get('errors')
    )


# =============================================
# PAGINATION
# =============================================


def get_pagination_args():
    """Lit page/limit dans la query string (bornés)"""
    page = request.args.get('page', 1, type=int) or 1
    limit = request.args.get('limit', DEFAULT_PAGE_LIMIT, type=int) or DEFAULT_PAGE_LIMIT
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_LIMIT)
    return page, limit


def pagination_meta(page, limit, total):
    return {
        'page': page,
        'limit': limit,
        'total': total,
        'totalPages': math.ceil(total / limit) if limit else 0
    }


def paginate_query(query, page, limit):
    """Pagine une requête Flask-SQLAlchemy, retourne (items, meta)"""
    pagination = query.paginate(page=page, per_page=limit, error_out=False)
    return pagination.items, pagination_meta(page, limit, pagination.total or 0)
