#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Messagerie entre utilisateurs : envoi, réponses, conversations, lecture et archivage
"""

from datetime import datetime
from sqlalchemy import func, select, or_, and_
import time

from models import db, Message, User

CONTENU_MAX_LENGTH = 5000
SUJET_MAX_LENGTH = 200


def _error(message, error='validation', errors=None):
    result = {'success': False, 'error': error, 'message': message}
    if errors:
        result['errors'] = errors
    return result


def generate_conversation_id(user_a, user_b):
    """Identifiant stable pour la paire (non ordonnée) de participants, horodaté en ms"""
    premier, second = sorted((user_a, user_b))
    return f'conv_{premier}_{second}_{int(time.time() * 1000)}'


def validate_message_data(data):
    """Retourne la liste des erreurs de champ pour un nouveau message"""
    errors = []

    contenu = (data.get('contenu') or '').strip()
    if not contenu:
        errors.append({'field': 'contenu', 'message': 'Le contenu est requis'})
    elif len(contenu) > CONTENU_MAX_LENGTH:
        errors.append({'field': 'contenu', 'message': f'{CONTENU_MAX_LENGTH} caractères maximum'})

    sujet = data.get('sujet')
    if sujet and len(sujet) > SUJET_MAX_LENGTH:
        errors.append({'field': 'sujet', 'message': f'{SUJET_MAX_LENGTH} caractères maximum'})

    if data.get('type', 'message') not in Message.TYPES:
        errors.append({'field': 'type', 'message': f"Valeurs autorisées: {', '.join(Message.TYPES)}"})
    if data.get('priorite', 'normale') not in Message.PRIORITES:
        errors.append({'field': 'priorite', 'message': f"Valeurs autorisées: {', '.join(Message.PRIORITES)}"})
    if data.get('objet_type') and data['objet_type'] not in Message.OBJET_TYPES:
        errors.append({'field': 'objet_type', 'message': f"Valeurs autorisées: {', '.join(Message.OBJET_TYPES)}"})

    return errors


def _participant(user_id):
    return or_(Message.expediteur_id == user_id, Message.destinataire_id == user_id)


def _is_pair_conversation(conversation_id, user_a, user_b):
    """La conversation existe déjà et ne contient que des échanges entre ces deux utilisateurs"""
    entre_eux = or_(
        and_(Message.expediteur_id == user_a, Message.destinataire_id == user_b),
        and_(Message.expediteur_id == user_b, Message.destinataire_id == user_a)
    )
    messages = Message.query.filter(Message.conversation_id == conversation_id)
    return messages.filter(entre_eux).count() > 0 and messages.filter(~entre_eux).count() == 0


def send_message(expediteur_id, data):
    """Envoie un message ; la conversation est créée si elle n'est pas fournie"""
    errors = validate_message_data(data)

    destinataire_id = data.get('destinataire_id')
    if not destinataire_id:
        errors.append({'field': 'destinataire_id', 'message': 'Le destinataire est requis'})
    elif str(destinataire_id) == str(expediteur_id):
        errors.append({'field': 'destinataire_id',
                       'message': 'Vous ne pouvez pas vous envoyer un message à vous-même'})
    if errors:
        return _error('Données du message invalides', errors=errors)

    destinataire = db.session.get(User, destinataire_id)
    if destinataire is None:
        return _error('Destinataire non trouvé', 'not_found')

    conversation_id = data.get('conversation_id')
    if conversation_id and not _is_pair_conversation(conversation_id, expediteur_id, destinataire.id):
        return _error("Cette conversation n'existe pas entre vous et ce destinataire", 'forbidden')

    message = Message(
        expediteur_id=expediteur_id,
        destinataire_id=destinataire.id,
        contenu=data['contenu'].strip(),
        sujet=data.get('sujet'),
        type=data.get('type', 'message'),
        priorite=data.get('priorite', 'normale'),
        statut='envoye',
        objet_type=data.get('objet_type'),
        objet_id=data.get('objet_id'),
        conversation_id=conversation_id or generate_conversation_id(expediteur_id, destinataire.id),
        date_envoi=datetime.utcnow()
    )
    db.session.add(message)
    db.session.commit()

    print(f"[MESSAGE] ✅ Message {message.id} envoyé de {expediteur_id} à {destinataire.id} ({message.conversation_id})")
    return {'success': True, 'message': 'Message envoyé avec succès', 'data': message.to_dict()}


def send_notification(expediteur_id, destinataire_id, contenu, sujet=None, objet_type=None, objet_id=None,
                      priorite='normale'):
    return send_message(expediteur_id, {
        'destinataire_id': destinataire_id,
        'contenu': contenu,
        'sujet': sujet,
        'type': 'notification',
        'priorite': priorite,
        'objet_type': objet_type,
        'objet_id': objet_id
    })


def reply_to_message(message_id, user_id, data):
    """Répond à un message : destinataire = expéditeur d'origine, même conversation"""
    original = db.session.get(Message, message_id)
    if original is None:
        return _error('Message non trouvé', 'not_found')
    if not original.can_be_read_by(user_id):
        return _error('Vous ne pouvez pas répondre à ce message', 'forbidden')

    errors = validate_message_data(data)
    if errors:
        return _error('Données du message invalides', errors=errors)

    destinataire_id = original.expediteur_id if original.expediteur_id != user_id else original.destinataire_id
    reponse = Message(
        expediteur_id=user_id,
        destinataire_id=destinataire_id,
        contenu=data['contenu'].strip(),
        sujet=data.get('sujet') or f"Re: {original.sujet or 'Message'}",
        type=data.get('type', 'message'),
        priorite=data.get('priorite', 'normale'),
        statut='envoye',
        conversation_id=original.conversation_id or generate_conversation_id(user_id, destinataire_id),
        message_parent_id=original.id,
        objet_type=original.objet_type,
        objet_id=original.objet_id,
        date_envoi=datetime.utcnow()
    )
    db.session.add(reponse)
    db.session.commit()

    print(f"[MESSAGE] ✅ Réponse {reponse.id} au message {original.id}")
    return {'success': True, 'message': 'Réponse envoyée avec succès', 'data': reponse.to_dict()}


def get_message(message_id, user_id):
    """Lecture d'un message par un participant ; l'ouverture par le destinataire le marque lu"""
    message = db.session.get(Message, message_id)
    if message is None:
        return _error('Message non trouvé', 'not_found')
    if not message.can_be_read_by(user_id):
        return _error('Accès non autorisé à ce message', 'forbidden')

    if message.destinataire_id == user_id and not message.lu:
        _mark_read(message)
        db.session.commit()

    return {'success': True, 'message': 'Message récupéré avec succès', 'data': message.to_dict()}


def _mark_read(message):
    message.lu = True
    message.date_lecture = datetime.utcnow()
    if message.statut != 'archive':
        message.statut = 'lu'


def mark_as_read(message_id, user_id):
    message = db.session.get(Message, message_id)
    if message is None:
        return _error('Message non trouvé', 'not_found')
    if message.destinataire_id != user_id:
        return _error('Seul le destinataire peut marquer ce message comme lu', 'forbidden')

    if message.lu:
        return {'success': True, 'message': 'Message déjà marqué comme lu'}

    _mark_read(message)
    db.session.commit()
    return {'success': True, 'message': 'Message marqué comme lu'}


def archive_message(message_id, user_id):
    message = db.session.get(Message, message_id)
    if message is None:
        return _error('Message non trouvé', 'not_found')
    if not message.can_be_read_by(user_id):
        return _error('Accès non autorisé à ce message', 'forbidden')

    message.statut = 'archive'
    db.session.commit()
    return {'success': True, 'message': 'Message archivé avec succès'}


def delete_message(message_id, user_id):
    message = db.session.get(Message, message_id)
    if message is None:
        return _error('Message non trouvé', 'not_found')
    if not message.can_be_deleted_by(user_id):
        return _error("Seul l'expéditeur peut supprimer ce message", 'forbidden')

    for reponse in message.reponses:
        reponse.message_parent_id = None
    db.session.delete(message)
    db.session.commit()

    print(f"[MESSAGE] Message {message_id} supprimé par {user_id}")
    return {'success': True, 'message': 'Message supprimé avec succès'}


def get_conversation(conversation_id, user_id):
    """Messages de la conversation dont l'utilisateur est l'expéditeur ou le destinataire"""
    conversation = Message.query.filter(Message.conversation_id == conversation_id)
    messages = conversation.filter(_participant(user_id)).order_by(Message.date_envoi.asc()).all()
    if not messages:
        if conversation.count() == 0:
            return _error('Conversation non trouvée', 'not_found')
        return _error('Accès non autorisé à cette conversation', 'forbidden')

    return {
        'success': True,
        'message': 'Conversation récupérée avec succès',
        'conversation_id': conversation_id,
        'messages': [message.to_dict() for message in messages]
    }


def list_conversations(user_id, limit=20):
    """Conversations de l'utilisateur (hors archives) avec dernier message et non lus"""
    participant = _participant(user_id)
    derniere_activite = func.max(Message.date_envoi)

    rows = db.session.execute(
        select(Message.conversation_id, derniere_activite, func.count(Message.id))
        .where(participant, Message.statut != 'archive', Message.conversation_id.isnot(None))
        .group_by(Message.conversation_id)
        .order_by(derniere_activite.desc())
        .limit(limit)
    ).all()

    conversations = []
    for conversation_id, activite, nombre in rows:
        dernier = Message.query.filter(Message.conversation_id == conversation_id, participant) \
            .order_by(Message.date_envoi.desc()).first()
        non_lus = Message.query.filter_by(conversation_id=conversation_id, destinataire_id=user_id, lu=False).count()
        conversations.append({
            'conversation_id': conversation_id,
            'dernier_message': dernier.summary() if dernier else None,
            'nombre_messages': nombre,
            'messages_non_lus': non_lus,
            'derniere_activite': activite.strftime('%Y-%m-%d %H:%M:%S') if activite else None
        })

    return {'success': True, 'message': 'Conversations récupérées avec succès', 'conversations': conversations}


def count_unread(user_id):
    return Message.query.filter(
        Message.destinataire_id == user_id,
        Message.lu.is_(False),
        Message.statut != 'archive'
    ).count()


def mark_conversation_read(conversation_id, user_id):
    """Marque lus les messages reçus dans la conversation ; les archivés restent archivés"""
    maintenant = datetime.utcnow()
    non_lus = Message.query.filter(
        Message.conversation_id == conversation_id,
        Message.destinataire_id == user_id,
        Message.lu.is_(False)
    )
    archives = non_lus.filter(Message.statut == 'archive').update(
        {'lu': True, 'date_lecture': maintenant}, synchronize_session=False)
    count = non_lus.filter(Message.statut != 'archive').update(
        {'lu': True, 'date_lecture': maintenant, 'statut': 'lu'}, synchronize_session=False)
    count += archives
    db.session.commit()
    return {'success': True, 'message': f'{count} message(s) marqué(s) comme lu(s)', 'messages_marques': count}


def inbox_query(user_id, lu=None, type_message=None, include_archived=False):
    query = Message.query.filter(Message.destinataire_id == user_id)
    if not include_archived:
        query = query.filter(Message.statut != 'archive')
    if lu is not None:
        query = query.filter(Message.lu.is_(lu))
    if type_message:
        query = query.filter(Message.type == type_message)
    return query.order_by(Message.date_envoi.desc())


def sent_query(user_id):
    return Message.query.filter(Message.expediteur_id == user_id).order_by(Message.date_envoi.desc())
