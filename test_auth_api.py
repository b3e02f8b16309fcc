#!/usr/bin/env python3
"""
Tests de l'authentification via l'API : inscription, connexion, tokens, sessions et mot de passe
"""

from models import db, User, Vendor, Client, AuthSession, PasswordResetToken
from conftest import make_client, auth_headers


def _register(http, **overrides):
    data = {'nom': 'Alice Martin', 'email': 'alice@test.com', 'password': 'secret123', 'role': 'client'}
    data.update(overrides)
    return http.post('/api/auth/register', json=data)


def _login(http, email='client@test.com', password='secret123'):
    return http.post('/api/auth/login', json={'email': email, 'password': password})


def test_register_client_and_vendor(http):
    response = _register(http)
    assert response.status_code == 201
    body = response.get_json()
    assert body['success'] is True
    assert 'timestamp' in body
    assert body['data']['user']['role'] == 'client'
    assert body['data']['accessToken'] and body['data']['refreshToken'] and body['data']['sessionId']
    assert db.session.get(Client, body['data']['user']['id']) is not None

    response = _register(http, nom='Bob Vendeur', email='Bob@Test.com', role='vendeur')
    assert response.status_code == 201
    user = response.get_json()['data']['user']
    assert user['email'] == 'bob@test.com'
    assert user['vendeur']['grade'] == 'Bronze'
    assert db.session.get(Vendor, user['id']) is not None


def test_register_validation_and_conflict(http):
    response = _register(http, nom='A', email='pas-un-email', password='123', role='admin')
    assert response.status_code == 400
    body = response.get_json()
    assert body['success'] is False
    assert {e['field'] for e in body['errors']} == {'nom', 'email', 'password', 'role'}

    assert _register(http).status_code == 201
    response = _register(http, email='ALICE@test.com')
    assert response.status_code == 409
    assert User.query.count() == 1


def test_login_and_me(http, client_user):
    response = _login(http)
    assert response.status_code == 200
    data = response.get_json()['data']
    assert data['user']['email'] == 'client@test.com'

    headers = {'Authorization': f"Bearer {data['accessToken']}"}
    response = http.get('/api/auth/me', headers=headers)
    assert response.status_code == 200
    assert response.get_json()['data']['user']['id'] == client_user.id
    assert db.session.get(User, client_user.id).derniere_connexion is not None

    assert http.get('/api/auth/validate-token', headers=headers).get_json()['data']['valid'] is True


def test_login_failures(http, client_user):
    assert _login(http, password='mauvais').status_code == 401
    assert _login(http, email='inconnu@test.com').status_code == 401
    assert http.post('/api/auth/login', json={}).status_code == 400

    client_user.statut = 'suspendu'
    db.session.commit()
    assert _login(http).status_code == 403


def test_missing_or_invalid_token(http, client_user):
    assert http.get('/api/auth/me').status_code == 401
    assert http.get('/api/auth/me', headers={'Authorization': 'Bearer abc.def.ghi'}).status_code == 401

    headers = auth_headers(client_user)
    client_user.statut = 'suspendu'
    db.session.commit()
    response = http.get('/api/auth/me', headers=headers)
    assert response.status_code == 403
    assert response.get_json()['message'] == 'Compte suspendu'


def test_refresh_rotates_token(http, client_user):
    tokens = _login(http).get_json()['data']

    response = http.post('/api/auth/refresh', json={'refreshToken': tokens['refreshToken']})
    assert response.status_code == 200
    nouveaux = response.get_json()['data']
    assert nouveaux['sessionId'] == tokens['sessionId']
    assert nouveaux['refreshToken'] != tokens['refreshToken']

    # L'ancien refresh token n'est plus accepté
    response = http.post('/api/auth/refresh', json={'refreshToken': tokens['refreshToken']})
    assert response.status_code == 401

    assert http.post('/api/auth/refresh', json={'refreshToken': 'invalide'}).status_code == 401
    assert http.post('/api/auth/refresh', json={}).status_code == 400


def test_logout_revokes_session(http, client_user):
    tokens = _login(http).get_json()['data']
    headers = {'Authorization': f"Bearer {tokens['accessToken']}", 'x-session-id': tokens['sessionId']}

    assert http.get('/api/auth/me', headers=headers).status_code == 200
    assert http.post('/api/auth/logout', headers=headers).status_code == 200

    assert db.session.get(AuthSession, tokens['sessionId']).revoked is True
    assert http.get('/api/auth/me', headers=headers).status_code == 401
    assert http.post('/api/auth/refresh', json={'refreshToken': tokens['refreshToken']}).status_code == 401


def test_sessions_listing_and_revocation(http, client_user):
    premiere = _login(http).get_json()['data']
    seconde = _login(http).get_json()['data']
    headers = {'Authorization': f"Bearer {seconde['accessToken']}"}

    response = http.get('/api/auth/sessions', headers=headers)
    assert response.get_json()['data']['total'] == 2

    response = http.delete(f"/api/auth/sessions/{premiere['sessionId']}", headers=headers)
    assert response.status_code == 200
    assert http.delete(f"/api/auth/sessions/{premiere['sessionId']}", headers=headers).status_code == 404

    response = http.delete('/api/auth/sessions', headers=headers)
    assert response.get_json()['data']['sessions_revoquees'] == 1
    assert http.get('/api/auth/sessions', headers=headers).get_json()['data']['total'] == 0


def test_session_of_other_user_is_rejected(http, client_user):
    autre = make_client(nom='Autre', email='autre@test.com')
    tokens = _login(http, email='autre@test.com').get_json()['data']

    headers = dict(auth_headers(client_user), **{'x-session-id': tokens['sessionId']})
    assert http.get('/api/auth/me', headers=headers).status_code == 401
    assert autre.id != client_user.id


def test_check_email(http, client_user):
    data = http.get('/api/auth/check-email/client@test.com').get_json()['data']
    assert data['disponible'] is False
    data = http.get('/api/auth/check-email/libre@test.com').get_json()['data']
    assert data['disponible'] is True


def test_update_profile(http, client_user):
    headers = auth_headers(client_user)
    response = http.put('/api/auth/profile', headers=headers,
                        json={'nom': 'Client Renommé', 'telephone': '0601020304'})
    assert response.status_code == 200
    user = response.get_json()['data']['user']
    assert user['nom'] == 'Client Renommé'
    assert user['client']['telephone'] == '0601020304'

    make_client(nom='Autre', email='pris@test.com')
    assert http.put('/api/auth/profile', headers=headers, json={'email': 'pris@test.com'}).status_code == 409
    assert http.put('/api/auth/profile', headers=headers, json={'email': 'invalide'}).status_code == 400


def test_change_password(http, client_user):
    headers = auth_headers(client_user)
    response = http.put('/api/auth/change-password', headers=headers,
                        json={'ancien_password': 'mauvais', 'nouveau_password': 'nouveau123'})
    assert response.status_code == 400

    response = http.put('/api/auth/change-password', headers=headers,
                        json={'ancien_password': 'secret123', 'nouveau_password': 'abc'})
    assert response.status_code == 400

    response = http.put('/api/auth/change-password', headers=headers,
                        json={'ancien_password': 'secret123', 'nouveau_password': 'nouveau123'})
    assert response.status_code == 200
    assert _login(http).status_code == 401
    assert _login(http, password='nouveau123').status_code == 200


def test_forgot_and_reset_password(http, client_user):
    response = http.post('/api/auth/forgot-password', json={'email': 'inconnu@test.com'})
    inconnu = response.get_json()['message']
    assert response.status_code == 200

    response = http.post('/api/auth/forgot-password', json={'email': 'client@test.com'})
    assert response.status_code == 200
    assert response.get_json()['message'] == inconnu

    reset = PasswordResetToken.query.filter_by(user_id=client_user.id).one()
    session_active = _login(http).get_json()['data']

    assert http.post('/api/auth/reset-password', json={'token': reset.token, 'password': '123'}).status_code == 400
    assert http.post('/api/auth/reset-password', json={'token': 'faux', 'password': 'nouveau123'}).status_code == 400

    response = http.post('/api/auth/reset-password', json={'token': reset.token, 'password': 'nouveau123'})
    assert response.status_code == 200
    assert _login(http, password='nouveau123').status_code == 200
    assert db.session.get(AuthSession, session_active['sessionId']).revoked is True

    # Token à usage unique
    response = http.post('/api/auth/reset-password', json={'token': reset.token, 'password': 'autre123'})
    assert response.status_code == 400


def test_delete_account(http, client_user):
    headers = auth_headers(client_user)
    assert http.delete('/api/auth/delete-account', headers=headers, json={'password': 'mauvais'}).status_code == 400

    response = http.delete('/api/auth/delete-account', headers=headers, json={'password': 'secret123'})
    assert response.status_code == 200
    assert User.query.filter_by(email='client@test.com').first() is None
    assert http.get('/api/auth/me', headers=headers).status_code == 401
