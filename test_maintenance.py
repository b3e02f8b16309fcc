#!/usr/bin/env python3
"""
Tests des tâches de maintenance : paniers abandonnés, sessions et tokens expirés, données par défaut
"""

from datetime import datetime, timedelta

from models import db, Cart, AuthSession, PasswordResetToken, Category
from cart_helpers import get_active_cart, add_product, validate_cart, purge_abandoned_carts
from auth_helpers import cleanup_expired_sessions, cleanup_expired_reset_tokens, create_password_reset_token
from db_helpers import seed_default_categories


def test_purge_only_old_active_carts(client_user, produit_a):
    ancien = get_active_cart(client_user.id)
    add_product(ancien, produit_a.id, 1)
    validate_cart(ancien, {'adresse_livraison': '12 rue des Lilas, 75000 Paris'})
    ancien.date_creation = datetime.utcnow() - timedelta(days=60)

    abandonne = get_active_cart(client_user.id)
    add_product(abandonne, produit_a.id, 2)
    abandonne.date_creation = datetime.utcnow() - timedelta(days=45)
    db.session.commit()
    abandonne_id = abandonne.id

    result = purge_abandoned_carts(30)
    assert result['nombre_nettoyes'] == 1
    assert db.session.get(Cart, abandonne_id) is None
    # Une commande n'est jamais purgée
    assert db.session.get(Cart, ancien.id).statut == 'valide'


def test_cleanup_sessions_and_reset_tokens(client_user):
    maintenant = datetime.utcnow()
    db.session.add_all([
        AuthSession(id='active', user_id=client_user.id, refresh_token_hash='a' * 64,
                    expires_at=maintenant + timedelta(days=1)),
        AuthSession(id='expiree', user_id=client_user.id, refresh_token_hash='b' * 64,
                    expires_at=maintenant - timedelta(days=1)),
        AuthSession(id='revoquee', user_id=client_user.id, refresh_token_hash='c' * 64,
                    expires_at=maintenant + timedelta(days=1), revoked=True),
    ])
    db.session.commit()

    assert cleanup_expired_sessions() == 2
    assert [s.id for s in AuthSession.query.all()] == ['active']

    create_password_reset_token(client_user)
    create_password_reset_token(client_user, hours=-1)
    assert cleanup_expired_reset_tokens() == 1
    assert PasswordResetToken.query.count() == 1


def test_default_categories_seed_is_idempotent(app):
    seed_default_categories()
    total = Category.query.count()
    assert total > 0
    seed_default_categories()
    assert Category.query.count() == total
