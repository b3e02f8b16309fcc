#!/usr/bin/env python3
"""
Tests de la messagerie : envoi, réponse, lecture, archivage et conversations
"""

from models import db, Message
from message_helpers import (send_message, send_notification, reply_to_message, get_message, mark_as_read,
                             archive_message, delete_message, get_conversation, list_conversations,
                             count_unread, mark_conversation_read, inbox_query, sent_query)
from conftest import make_client


def _envoyer(expediteur, destinataire, contenu='Bonjour, le produit est-il disponible ?', **extra):
    data = dict({'destinataire_id': destinataire.id, 'contenu': contenu, 'sujet': 'Disponibilité'}, **extra)
    result = send_message(expediteur.id, data)
    assert result['success'], result
    return result['data']


def test_send_message_creates_conversation(client_user, vendor_user):
    message = _envoyer(client_user, vendor_user)
    premier, second = sorted((client_user.id, vendor_user.id))
    assert message['conversation_id'].startswith(f'conv_{premier}_{second}_')
    assert message['statut'] == 'envoye'
    assert message['lu'] is False
    assert message['expediteur']['id'] == client_user.id
    assert count_unread(vendor_user.id) == 1
    assert count_unread(client_user.id) == 0


def test_send_message_validation(client_user, vendor_user):
    result = send_message(client_user.id, {'destinataire_id': vendor_user.id, 'contenu': '   '})
    assert result['error'] == 'validation'
    assert result['errors'][0]['field'] == 'contenu'

    result = send_message(client_user.id, {'destinataire_id': vendor_user.id, 'contenu': 'x' * 5001})
    assert result['error'] == 'validation'

    result = send_message(client_user.id, {'destinataire_id': vendor_user.id, 'contenu': 'ok', 'priorite': 'extreme'})
    assert result['errors'][0]['field'] == 'priorite'

    result = send_message(client_user.id, {'contenu': 'Sans destinataire'})
    assert result['errors'][0]['field'] == 'destinataire_id'

    assert send_message(client_user.id, {'destinataire_id': 9999, 'contenu': 'ok'})['error'] == 'not_found'
    assert Message.query.count() == 0


def test_reply_goes_back_to_sender_in_same_conversation(client_user, vendor_user):
    original = _envoyer(client_user, vendor_user)

    result = reply_to_message(original['id'], vendor_user.id, {'contenu': 'Oui, en stock.'})
    assert result['success']
    reponse = result['data']
    assert reponse['destinataire']['id'] == client_user.id
    assert reponse['conversation_id'] == original['conversation_id']
    assert reponse['message_parent_id'] == original['id']
    assert reponse['sujet'] == 'Re: Disponibilité'

    intrus = make_client(nom='Intrus', email='intrus@test.com')
    assert reply_to_message(original['id'], intrus.id, {'contenu': 'Moi aussi'})['error'] == 'forbidden'

    conversation = get_conversation(original['conversation_id'], client_user.id)
    assert [m['id'] for m in conversation['messages']] == [original['id'], reponse['id']]
    assert get_conversation(original['conversation_id'], intrus.id)['error'] == 'forbidden'
    assert get_conversation('conv_inconnue', client_user.id)['error'] == 'not_found'


def test_recipient_opening_marks_read(client_user, vendor_user):
    message = _envoyer(client_user, vendor_user)

    # L'expéditeur qui relit son message ne le marque pas lu
    assert get_message(message['id'], client_user.id)['data']['lu'] is False

    lu = get_message(message['id'], vendor_user.id)['data']
    assert lu['lu'] is True
    assert lu['statut'] == 'lu'
    assert lu['date_lecture'] is not None
    assert count_unread(vendor_user.id) == 0

    intrus = make_client(nom='Intrus', email='intrus@test.com')
    assert get_message(message['id'], intrus.id)['error'] == 'forbidden'
    assert get_message(9999, vendor_user.id)['error'] == 'not_found'


def test_mark_as_read_only_by_recipient(client_user, vendor_user):
    message = _envoyer(client_user, vendor_user)
    assert mark_as_read(message['id'], client_user.id)['error'] == 'forbidden'
    assert mark_as_read(message['id'], vendor_user.id)['success']
    assert mark_as_read(message['id'], vendor_user.id)['message'] == 'Message déjà marqué comme lu'


def test_archive_hides_from_inbox_and_conversations(client_user, vendor_user):
    message = _envoyer(client_user, vendor_user)
    assert inbox_query(vendor_user.id).count() == 1

    assert archive_message(message['id'], vendor_user.id)['success']
    assert inbox_query(vendor_user.id).count() == 0
    assert inbox_query(vendor_user.id, include_archived=True).count() == 1
    assert count_unread(vendor_user.id) == 0
    assert list_conversations(vendor_user.id)['conversations'] == []


def test_only_sender_can_delete(client_user, vendor_user):
    message = _envoyer(client_user, vendor_user)
    reponse = reply_to_message(message['id'], vendor_user.id, {'contenu': 'Réponse'})['data']

    assert delete_message(message['id'], vendor_user.id)['error'] == 'forbidden'
    assert delete_message(message['id'], client_user.id)['success']
    assert db.session.get(Message, message['id']) is None
    assert db.session.get(Message, reponse['id']).message_parent_id is None
    assert delete_message(message['id'], client_user.id)['error'] == 'not_found'


def test_conversation_list_and_mark_conversation_read(client_user, vendor_user):
    premier = _envoyer(client_user, vendor_user, contenu='Premier message')
    _envoyer(client_user, vendor_user, contenu='Deuxième message', conversation_id=premier['conversation_id'])
    autre = make_client(nom='Autre', email='autre@test.com')
    _envoyer(autre, vendor_user, contenu='Autre conversation')

    conversations = list_conversations(vendor_user.id)['conversations']
    assert len(conversations) == 2
    par_id = {c['conversation_id']: c for c in conversations}
    assert par_id[premier['conversation_id']]['nombre_messages'] == 2
    assert par_id[premier['conversation_id']]['messages_non_lus'] == 2
    assert count_unread(vendor_user.id) == 3

    result = mark_conversation_read(premier['conversation_id'], vendor_user.id)
    assert result['messages_marques'] == 2
    assert count_unread(vendor_user.id) == 1
    assert sent_query(client_user.id).count() == 2


def test_notification_type(client_user, vendor_user):
    result = send_notification(vendor_user.id, client_user.id, 'Votre commande est expédiée',
                               sujet='Commande', objet_type='commande', objet_id=1)
    assert result['success']
    assert result['data']['type'] == 'notification'
    assert inbox_query(client_user.id, type_message='notification').count() == 1
    assert inbox_query(client_user.id, type_message='message').count() == 0


def test_cannot_message_yourself(client_user):
    result = send_message(client_user.id, {'destinataire_id': client_user.id, 'contenu': 'Note pour moi'})
    assert result['error'] == 'validation'
    assert result['errors'][0]['field'] == 'destinataire_id'
    assert Message.query.count() == 0


def test_foreign_conversation_id_is_refused(client_user, vendor_user):
    secret = _envoyer(client_user, vendor_user, contenu='Adresse de livraison privée')
    intrus = make_client(nom='Intrus', email='intrus@test.com')

    result = send_message(intrus.id, {'destinataire_id': vendor_user.id, 'contenu': 'Bonjour',
                                      'conversation_id': secret['conversation_id']})
    assert result['error'] == 'forbidden'
    assert Message.query.filter_by(conversation_id=secret['conversation_id']).count() == 1
    assert get_conversation(secret['conversation_id'], intrus.id)['error'] == 'forbidden'

    result = send_message(client_user.id, {'destinataire_id': vendor_user.id, 'contenu': 'Test',
                                           'conversation_id': 'conv_inventee'})
    assert result['error'] == 'forbidden'


def test_conversation_only_returns_own_messages(client_user, vendor_user):
    premier = _envoyer(client_user, vendor_user, contenu='Message A-B')
    intrus = make_client(nom='Intrus', email='intrus@test.com')
    # Ligne injectée directement en base dans la même conversation
    db.session.add(Message(expediteur_id=intrus.id, destinataire_id=vendor_user.id, contenu='Injecté',
                           statut='envoye', type='message', priorite='normale',
                           conversation_id=premier['conversation_id']))
    db.session.commit()

    vue_intrus = get_conversation(premier['conversation_id'], intrus.id)
    assert [m['contenu'] for m in vue_intrus['messages']] == ['Injecté']

    vue_client = get_conversation(premier['conversation_id'], client_user.id)
    assert [m['contenu'] for m in vue_client['messages']] == ['Message A-B']


def test_mark_conversation_read_keeps_archived_messages_archived(client_user, vendor_user):
    premier = _envoyer(client_user, vendor_user, contenu='À archiver')
    _envoyer(client_user, vendor_user, contenu='À lire', conversation_id=premier['conversation_id'])

    assert archive_message(premier['id'], vendor_user.id)['success']
    assert inbox_query(vendor_user.id).count() == 1

    result = mark_conversation_read(premier['conversation_id'], vendor_user.id)
    assert result['messages_marques'] == 2
    assert inbox_query(vendor_user.id).count() == 1
    archive = db.session.get(Message, premier['id'])
    assert archive.statut == 'archive'
    assert archive.lu is True
