#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Database Helper Functions pour la marketplace
Fonctions utilitaires pour interagir avec la base de données SQLAlchemy :
utilisateurs, profils, catégories, boutiques, produits et templates
"""

from models import (db, User, Client, Vendor, SellerGrade, Template, Boutique, Category, Product,
                    ProductImage, Cart, CartLine, Message, to_decimal, STOCK_CRITIQUE_SEUIL)
from sqlalchemy import func, or_, select
from datetime import datetime, date, timedelta
from decimal import Decimal, InvalidOperation
import re

from api_response import pagination_meta
from auth_helpers import boutique_limit_status, product_limit_status
from grade_helpers import get_lowest_grade, get_grade_overview, get_vendor_statistics, SOLD_STATUSES
from cart_helpers import compute_total, get_vendor_orders, change_cart_status
from message_helpers import count_unread

EMAIL_REGEX = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
COULEUR_REGEX = re.compile(r'^#[0-9a-fA-F]{6}$')
URL_PERSONNALISEE_REGEX = re.compile(r'^[a-z0-9-]{3,100}$')

# Commandes en cours : leurs produits ne peuvent pas être supprimés
OPEN_ORDER_STATUSES = ('valide', 'expedie')

DEFAULT_TEMPLATES = [
    {'nom': 'Basique', 'description': 'Template simple et épuré pour démarrer', 'niveau': 1},
    {'nom': 'Professionnel', 'description': 'Mise en page professionnelle avec bannière', 'niveau': 2},
    {'nom': 'Premium', 'description': 'Template premium avec sections personnalisables', 'niveau': 3},
    {'nom': 'Élite', 'description': 'Template exclusif avec toutes les options', 'niveau': 4},
]

DEFAULT_CATEGORIES = [
    {'nom': 'Électronique', 'couleur': '#007bff'},
    {'nom': 'Mode', 'couleur': '#e83e8c'},
    {'nom': 'Maison', 'couleur': '#28a745'},
    {'nom': 'Sport', 'couleur': '#fd7e14'},
    {'nom': 'Livres', 'couleur': '#6f42c1'},
]


def _error(message, error='validation', errors=None):
    result = {'success': False, 'error': error, 'message': message}
    if errors:
        result['errors'] = errors
    return result


def _check_length(errors, data, field, min_length, max_length, required=True):
    value = data.get(field)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            errors.append({'field': field, 'message': f'Le champ {field} est requis'})
        return None
    value = str(value).strip()
    if len(value) < min_length or len(value) > max_length:
        errors.append({'field': field, 'message': f'Entre {min_length} et {max_length} caractères'})
    return value


def _parse_price(errors, value, field='prix'):
    try:
        prix = to_decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        errors.append({'field': field, 'message': 'Le prix doit être un nombre'})
        return None
    if prix < 0:
        errors.append({'field': field, 'message': 'Le prix ne peut pas être négatif'})
        return None
    return prix


def _parse_stock(errors, value, field='stock'):
    try:
        stock = int(value)
    except (TypeError, ValueError):
        errors.append({'field': field, 'message': 'Le stock doit être un entier'})
        return None
    if stock < 0:
        errors.append({'field': field, 'message': 'Le stock ne peut pas être négatif'})
        return None
    return stock


# =============================================
# FONCTIONS UTILISATEURS
# =============================================

def get_user_by_email(email):
    """Récupérer un utilisateur par email"""
    return User.query.filter_by(email=(email or '').strip().lower()).first()


def get_user_by_id(user_id):
    """Récupérer un utilisateur par ID"""
    return db.session.get(User, user_id)


def is_email_available(email, exclude_user_id=None):
    query = User.query.filter_by(email=(email or '').strip().lower())
    if exclude_user_id:
        query = query.filter(User.id != exclude_user_id)
    return query.first() is None


def register_user(data):
    """
    Créer un compte client ou vendeur avec son profil
    Le vendeur démarre au grade le plus bas
    """
    errors = []
    nom = _check_length(errors, data, 'nom', 2, 100)
    email = (data.get('email') or '').strip().lower()
    if not EMAIL_REGEX.match(email):
        errors.append({'field': 'email', 'message': 'Email invalide'})
    password = data.get('password') or ''
    if len(password) < 6:
        errors.append({'field': 'password', 'message': 'Le mot de passe doit contenir au moins 6 caractères'})
    role = data.get('role') or 'client'
    if role not in ('client', 'vendeur'):
        errors.append({'field': 'role', 'message': 'Le rôle doit être client ou vendeur'})
    if errors:
        return _error('Erreurs de validation', errors=errors)

    if not is_email_available(email):
        return _error('Un utilisateur avec cet email existe déjà', 'conflict')

    user = User(nom=nom, email=email, role=role, statut='actif')
    user.set_password(password)
    db.session.add(user)
    db.session.flush()

    if role == 'client':
        db.session.add(Client(id=user.id, adresse=data.get('adresse'), telephone=data.get('telephone')))
    else:
        grade = get_lowest_grade()
        if grade is None:
            db.session.rollback()
            return _error('Aucun grade vendeur configuré', 'server')
        db.session.add(Vendor(id=user.id, numero_fiscal=data.get('numero_fiscal'), grade_id=grade.id))

    db.session.commit()
    print(f"[AUTH] ✅ Nouveau compte {role}: {email} (ID {user.id})")
    return {'success': True, 'message': 'Inscription réussie', 'user': user}


def authenticate_user(email, password):
    user = get_user_by_email(email)
    if user is None or not user.check_password(password or ''):
        return _error('Email ou mot de passe incorrect', 'unauthorized')
    if not user.is_active():
        return _error('Compte suspendu', 'forbidden')

    user.derniere_connexion = datetime.utcnow()
    db.session.commit()
    return {'success': True, 'message': 'Connexion réussie', 'user': user}


def update_user_profile(user, data):
    errors = []
    if 'nom' in data:
        nom = _check_length(errors, data, 'nom', 2, 100)
    if 'email' in data:
        email = (data.get('email') or '').strip().lower()
        if not EMAIL_REGEX.match(email):
            errors.append({'field': 'email', 'message': 'Email invalide'})
    if errors:
        return _error('Erreurs de validation', errors=errors)

    if 'email' in data:
        if not is_email_available(email, exclude_user_id=user.id):
            return _error('Cet email est déjà utilisé', 'conflict')
        user.email = email
    if 'nom' in data:
        user.nom = nom

    if user.client is not None:
        _apply_client_fields(user.client, data)
    if user.vendeur is not None and 'numero_fiscal' in data:
        user.vendeur.numero_fiscal = data.get('numero_fiscal')

    db.session.commit()
    return {'success': True, 'message': 'Profil mis à jour avec succès', 'user': user.to_dict(include_profile=True)}


def change_password(user, ancien_password, nouveau_password):
    if not user.check_password(ancien_password or ''):
        return _error('Mot de passe actuel incorrect', 'validation',
                      [{'field': 'ancien_password', 'message': 'Mot de passe actuel incorrect'}])
    if not nouveau_password or len(nouveau_password) < 6:
        return _error('Le nouveau mot de passe doit contenir au moins 6 caractères', 'validation',
                      [{'field': 'nouveau_password', 'message': '6 caractères minimum'}])

    user.set_password(nouveau_password)
    db.session.commit()
    print(f"[AUTH] Mot de passe modifié pour {user.email}")
    return {'success': True, 'message': 'Mot de passe modifié avec succès'}


def delete_user_account(user, password):
    if not user.check_password(password or ''):
        return _error('Mot de passe incorrect', 'validation',
                      [{'field': 'password', 'message': 'Mot de passe incorrect'}])
    return _delete_user(user)


def _delete_user(user):
    if user.client is not None:
        # Les commandes en cours sont annulées : stock remis et statistiques vendeur corrigées
        commandes = Cart.query.filter(Cart.client_id == user.id, Cart.statut.in_(OPEN_ORDER_STATUSES)).all()
        for commande in commandes:
            change_cart_status(commande, 'annule')
        if commandes:
            print(f"[AUTH] {len(commandes)} commande(s) en cours annulée(s) avant suppression de {user.email}")

    if user.vendeur is not None:
        for boutique in list(user.vendeur.boutiques):
            for produit in list(boutique.produits):
                _detach_product_from_carts(produit)
    Message.query.filter(
        or_(Message.expediteur_id == user.id, Message.destinataire_id == user.id)
    ).update({'message_parent_id': None}, synchronize_session=False)
    Message.query.filter(
        or_(Message.expediteur_id == user.id, Message.destinataire_id == user.id)
    ).delete(synchronize_session=False)

    email = user.email
    db.session.delete(user)
    db.session.commit()
    print(f"[AUTH] Compte supprimé: {email}")
    return {'success': True, 'message': 'Compte supprimé avec succès'}


def list_users(role=None, statut=None, search=None, page=1, limit=20):
    query = User.query
    if role:
        query = query.filter(User.role == role)
    if statut:
        query = query.filter(User.statut == statut)
    if search:
        motif = f'%{search}%'
        query = query.filter(or_(User.nom.ilike(motif), User.email.ilike(motif)))

    pagination = query.order_by(User.created_at.desc()).paginate(page=page, per_page=limit, error_out=False)
    return {
        'success': True,
        'message': 'Utilisateurs récupérés avec succès',
        'utilisateurs': [user.to_dict() for user in pagination.items],
        'pagination': pagination_meta(page, limit, pagination.total or 0)
    }


def change_user_status(admin, user_id, statut):
    if statut not in ('actif', 'suspendu'):
        return _error('Statut invalide', errors=[{'field': 'statut', 'message': 'actif ou suspendu'}])
    user = get_user_by_id(user_id)
    if user is None:
        return _error('Utilisateur non trouvé', 'not_found')
    if user.id == admin.id:
        return _error('Vous ne pouvez pas modifier votre propre statut', 'forbidden')

    user.statut = statut
    db.session.commit()
    print(f"[AUTH] Statut de {user.email} -> {statut} (par {admin.email})")
    return {'success': True, 'message': f'Utilisateur {statut}', 'utilisateur': user.to_dict()}


def delete_user_by_admin(admin, user_id):
    user = get_user_by_id(user_id)
    if user is None:
        return _error('Utilisateur non trouvé', 'not_found')
    if user.id == admin.id:
        return _error('Vous ne pouvez pas supprimer votre propre compte ici', 'forbidden')
    return _delete_user(user)


# =============================================
# PROFILS CLIENT ET VENDEUR
# =============================================

def _apply_client_fields(client, data):
    if 'adresse' in data:
        client.adresse = data.get('adresse')
    if 'telephone' in data:
        client.telephone = data.get('telephone')


def update_client_profile(client, data):
    telephone = data.get('telephone')
    if telephone and len(str(telephone)) > 20:
        return _error('Téléphone invalide', errors=[{'field': 'telephone', 'message': '20 caractères maximum'}])

    _apply_client_fields(client, data)
    db.session.commit()
    return {'success': True, 'message': 'Profil client mis à jour', 'profil': get_client_profile(client)}


def get_client_profile(client):
    data = client.utilisateur.to_dict()
    data['client'] = client.to_dict()
    return data


def get_client_dashboard(client):
    panier = Cart.query.filter_by(client_id=client.id, statut='actif').first()
    resume_panier = None
    if panier is not None:
        calcul = compute_total(panier)
        resume_panier = {
            'panier_id': panier.id,
            'total': calcul['total'],
            'nombre_articles': calcul['nombre_articles']
        }

    commandes = Cart.query.filter(Cart.client_id == client.id, Cart.statut != 'actif')
    total_depense = db.session.execute(
        select(func.sum(Cart.total)).where(Cart.client_id == client.id, Cart.statut.in_(SOLD_STATUSES))
    ).scalar()

    return {
        'profil': get_client_profile(client),
        'panier': resume_panier,
        'nombre_commandes': commandes.count(),
        'total_depense': float(total_depense or 0),
        'commandes_recentes': [
            commande.to_dict(include_lines=False)
            for commande in commandes.order_by(Cart.date_validation.desc()).limit(5).all()
        ],
        'messages_non_lus': count_unread(client.id)
    }


def get_vendor_profile(vendeur):
    data = vendeur.utilisateur.to_dict()
    data['vendeur'] = vendeur.to_dict()
    data['grade'] = vendeur.grade.to_dict() if vendeur.grade else None
    return data


def update_vendor_profile(vendeur, data):
    numero_fiscal = data.get('numero_fiscal')
    if numero_fiscal and len(str(numero_fiscal)) > 50:
        return _error('Numéro fiscal invalide', errors=[{'field': 'numero_fiscal', 'message': '50 caractères maximum'}])

    if 'numero_fiscal' in data:
        vendeur.numero_fiscal = numero_fiscal
    db.session.commit()
    return {'success': True, 'message': 'Profil vendeur mis à jour', 'profil': get_vendor_profile(vendeur)}


def get_vendor_dashboard(vendeur):
    boutique_ids = [boutique.id for boutique in vendeur.boutiques]
    nb_produits = Product.query.filter(Product.boutique_id.in_(boutique_ids)).count() if boutique_ids else 0
    fin = date.today()
    statistiques = get_vendor_statistics(vendeur.id, date_debut=fin - timedelta(days=30), date_fin=fin)
    rapport_stock = stock_report(vendeur)

    return {
        'profil': get_vendor_profile(vendeur),
        'boutiques': [boutique.to_dict() for boutique in vendeur.boutiques],
        'nombre_boutiques': len(boutique_ids),
        'nombre_produits': nb_produits,
        'alertes_stock': {
            'epuises': len(rapport_stock['epuises']),
            'critiques': len(rapport_stock['critiques'])
        },
        'statistiques_30_jours': statistiques['resume'],
        'grade': get_grade_overview(vendeur),
        'commandes_recentes': get_vendor_orders(vendeur.id, limit=5)['commandes'],
        'messages_non_lus': count_unread(vendeur.id)
    }


# =============================================
# FONCTIONS CATÉGORIES
# =============================================

def seed_default_categories():
    created = 0
    for ordre, data in enumerate(DEFAULT_CATEGORIES, start=1):
        if Category.query.filter_by(nom=data['nom'], parent_id=None).first() is None:
            db.session.add(Category(nom=data['nom'], couleur=data['couleur'], ordre_affichage=ordre))
            created += 1
    db.session.commit()
    print(f"[DB] ✅ Catégories par défaut: {created} créée(s)")
    return created


def _product_counts():
    rows = db.session.execute(
        select(Product.categorie_id, func.count(Product.id))
        .where(Product.statut == 'actif')
        .group_by(Product.categorie_id)
    ).all()
    return dict(rows)


def get_all_categories(active_only=True, parent_id=None, search=None):
    """Récupérer les catégories avec leur nombre de produits actifs"""
    query = Category.query
    if active_only:
        query = query.filter(Category.statut == 'active')
    if parent_id is not None:
        query = query.filter(Category.parent_id == parent_id)
    if search:
        query = query.filter(Category.nom.ilike(f'%{search}%'))

    compteurs = _product_counts()
    return [
        categorie.to_dict(nombre_produits=compteurs.get(categorie.id, 0))
        for categorie in query.order_by(Category.ordre_affichage.asc(), Category.nom.asc()).all()
    ]


def get_category_tree(active_only=True):
    categories = get_all_categories(active_only=active_only)
    par_parent = {}
    for categorie in categories:
        par_parent.setdefault(categorie['parent_id'], []).append(categorie)

    def build(parent_id):
        noeuds = []
        for categorie in par_parent.get(parent_id, []):
            noeud = dict(categorie)
            noeud['sous_categories'] = build(categorie['id'])
            noeuds.append(noeud)
        return noeuds

    return build(None)


def get_category_by_id(category_id):
    """Récupérer une catégorie par ID"""
    return db.session.get(Category, category_id)


def get_category_detail(category_id):
    categorie = get_category_by_id(category_id)
    if categorie is None:
        return _error('Catégorie non trouvée', 'not_found')
    compteurs = _product_counts()
    data = categorie.to_dict(nombre_produits=compteurs.get(categorie.id, 0))
    data['sous_categories'] = [
        sous.to_dict(nombre_produits=compteurs.get(sous.id, 0)) for sous in categorie.sous_categories
    ]
    return {'success': True, 'message': 'Catégorie récupérée avec succès', 'categorie': data}


def _validate_category(data, partial=False):
    errors = []
    if not partial or 'nom' in data:
        _check_length(errors, data, 'nom', 2, 100)
    couleur = data.get('couleur')
    if couleur and not COULEUR_REGEX.match(couleur):
        errors.append({'field': 'couleur', 'message': 'Format attendu: #rrggbb'})
    if data.get('statut') and data['statut'] not in ('active', 'inactive'):
        errors.append({'field': 'statut', 'message': 'active ou inactive'})
    parent_id = data.get('parent_id')
    if parent_id and get_category_by_id(parent_id) is None:
        errors.append({'field': 'parent_id', 'message': 'Catégorie parente introuvable'})
    return errors


def create_category(data):
    errors = _validate_category(data)
    if errors:
        return _error('Erreurs de validation', errors=errors)

    categorie = Category(
        nom=data['nom'].strip(),
        description=data.get('description'),
        image=data.get('image'),
        couleur=data.get('couleur') or '#007bff',
        parent_id=data.get('parent_id'),
        statut=data.get('statut') or 'active',
        ordre_affichage=int(data.get('ordre_affichage') or 0)
    )
    db.session.add(categorie)
    db.session.commit()
    print(f"[DB] Catégorie créée: {categorie.nom} (ID {categorie.id})")
    return {'success': True, 'message': 'Catégorie créée avec succès', 'categorie': categorie.to_dict()}


def update_category(category_id, data):
    categorie = get_category_by_id(category_id)
    if categorie is None:
        return _error('Catégorie non trouvée', 'not_found')

    errors = _validate_category(data, partial=True)
    if data.get('parent_id') == categorie.id:
        errors.append({'field': 'parent_id', 'message': 'Une catégorie ne peut pas être son propre parent'})
    if errors:
        return _error('Erreurs de validation', errors=errors)

    for field in ('description', 'image', 'couleur', 'parent_id', 'statut', 'ordre_affichage'):
        if field in data:
            setattr(categorie, field, data[field])
    if 'nom' in data:
        categorie.nom = data['nom'].strip()

    db.session.commit()
    return {'success': True, 'message': 'Catégorie mise à jour avec succès', 'categorie': categorie.to_dict()}


def change_category_status(category_id, statut):
    return update_category(category_id, {'statut': statut}) if statut else _error(
        'Statut requis', errors=[{'field': 'statut', 'message': 'active ou inactive'}])


def delete_category(category_id):
    categorie = get_category_by_id(category_id)
    if categorie is None:
        return _error('Catégorie non trouvée', 'not_found')

    nb_produits = Product.query.filter_by(categorie_id=categorie.id).count()
    if nb_produits > 0:
        return _error(f'Impossible de supprimer: {nb_produits} produit(s) utilisent cette catégorie')
    if categorie.sous_categories:
        return _error('Impossible de supprimer une catégorie qui a des sous-catégories')

    db.session.delete(categorie)
    db.session.commit()
    return {'success': True, 'message': 'Catégorie supprimée avec succès'}


def reorder_categories(ordres):
    """ordres: liste de {id, ordre_affichage}"""
    if not isinstance(ordres, list) or not ordres:
        return _error('Liste des ordres requise', errors=[{'field': 'ordres', 'message': 'Liste non vide attendue'}])

    for item in ordres:
        categorie = get_category_by_id(item.get('id'))
        if categorie is None:
            db.session.rollback()
            return _error(f"Catégorie {item.get('id')} non trouvée", 'not_found')
        categorie.ordre_affichage = int(item.get('ordre_affichage') or 0)

    db.session.commit()
    return {'success': True, 'message': 'Ordre des catégories mis à jour'}


# =============================================
# FONCTIONS TEMPLATES
# =============================================

def seed_default_templates():
    """Crée les templates par défaut et les rattache aux grades"""
    grades = {grade.niveau: grade for grade in SellerGrade.query.all()}
    for data in DEFAULT_TEMPLATES:
        grade = grades.get(data['niveau'])
        if grade is None:
            continue
        template = Template.query.filter_by(nom=data['nom']).first()
        if template is None:
            db.session.add(Template(nom=data['nom'], description=data['description'], grade_requis_id=grade.id))
    db.session.flush()

    for grade in grades.values():
        ids = [
            template.id for template in Template.query.join(SellerGrade, Template.grade_requis_id == SellerGrade.id)
            .filter(SellerGrade.niveau <= grade.niveau).order_by(Template.id).all()
        ]
        grade.set_templates_disponibles(ids)

    db.session.commit()
    print("[DB] ✅ Templates par défaut initialisés")


def get_all_templates():
    return [template.to_dict() for template in Template.query.order_by(Template.id.asc()).all()]


def get_template_by_id(template_id):
    return db.session.get(Template, template_id)


def get_templates_for_grade(grade):
    return [
        template.to_dict() for template in Template.query.order_by(Template.id.asc()).all()
        if template.is_allowed_for(grade)
    ]


def get_available_templates(vendeur):
    disponibles = get_templates_for_grade(vendeur.grade)
    ids = {template['id'] for template in disponibles}
    verrouilles = [template for template in get_all_templates() if template['id'] not in ids]
    return {
        'success': True,
        'message': 'Templates récupérés avec succès',
        'grade': vendeur.grade.nom if vendeur.grade else None,
        'disponibles': disponibles,
        'verrouilles': verrouilles
    }


def create_template(data):
    errors = []
    nom = _check_length(errors, data, 'nom', 2, 100)
    grade = db.session.get(SellerGrade, data.get('grade_requis_id')) if data.get('grade_requis_id') else None
    if grade is None:
        errors.append({'field': 'grade_requis_id', 'message': 'Grade requis introuvable'})
    if errors:
        return _error('Erreurs de validation', errors=errors)

    if Template.query.filter_by(nom=nom).first() is not None:
        return _error('Un template avec ce nom existe déjà', 'conflict')

    template = Template(nom=nom, description=data.get('description'), grade_requis_id=grade.id)
    db.session.add(template)
    db.session.commit()
    return {'success': True, 'message': 'Template créé avec succès', 'template': template.to_dict()}


# =============================================
# FONCTIONS BOUTIQUES
# =============================================

def get_boutique_by_id(boutique_id):
    return db.session.get(Boutique, boutique_id)


def get_owned_boutique(vendeur, boutique_id):
    boutique = get_boutique_by_id(boutique_id)
    if boutique is None:
        return None, _error('Boutique non trouvée', 'not_found')
    if boutique.vendeur_id != vendeur.id:
        return None, _error('Vous ne pouvez accéder qu\'à vos propres boutiques', 'forbidden')
    return boutique, None


def _validate_boutique(data, partial=False):
    errors = []
    if not partial or 'nom' in data:
        _check_length(errors, data, 'nom', 2, 100)
    couleur = data.get('couleur_theme')
    if couleur and not COULEUR_REGEX.match(couleur):
        errors.append({'field': 'couleur_theme', 'message': 'Format attendu: #rrggbb'})
    url = data.get('url_personnalisee')
    if url and not URL_PERSONNALISEE_REGEX.match(url):
        errors.append({'field': 'url_personnalisee', 'message': 'Minuscules, chiffres et tirets (3 à 100)'})
    if data.get('statut') and data['statut'] not in Boutique.STATUTS:
        errors.append({'field': 'statut', 'message': f"Valeurs autorisées: {', '.join(Boutique.STATUTS)}"})
    return errors


def _check_template(vendeur, template_id):
    template = get_template_by_id(template_id)
    if template is None:
        return None, _error('Template non trouvé', 'not_found')
    if not template.is_allowed_for(vendeur.grade):
        return None, _error(
            f'Le template {template.nom} nécessite le grade {template.grade_requis.nom}', 'forbidden'
        )
    return template, None


def _check_url_available(url, exclude_id=None):
    if not url:
        return True
    query = Boutique.query.filter_by(url_personnalisee=url)
    if exclude_id:
        query = query.filter(Boutique.id != exclude_id)
    return query.first() is None


def create_boutique(vendeur, data):
    errors = _validate_boutique(data)
    if errors:
        return _error('Erreurs de validation', errors=errors)

    count, limite = boutique_limit_status(vendeur)
    if count >= limite:
        return _error(f'Votre grade {vendeur.grade.nom} ne permet que {limite} boutique(s)', 'forbidden')

    template_id = data.get('template_id')
    if template_id is None:
        disponibles = get_templates_for_grade(vendeur.grade)
        if not disponibles:
            return _error('Aucun template disponible pour votre grade', 'forbidden')
        template_id = disponibles[0]['id']
    template, error = _check_template(vendeur, template_id)
    if error:
        return error

    if not _check_url_available(data.get('url_personnalisee')):
        return _error('Cette URL personnalisée est déjà utilisée', 'conflict')

    boutique = Boutique(
        vendeur_id=vendeur.id,
        template_id=template.id,
        nom=data['nom'].strip(),
        description=data.get('description'),
        logo=data.get('logo'),
        banniere=data.get('banniere'),
        couleur_theme=data.get('couleur_theme') or '#007bff',
        url_personnalisee=data.get('url_personnalisee') or None,
        statut='active'
    )
    db.session.add(boutique)
    db.session.commit()
    print(f"[DB] ✅ Boutique créée: {boutique.nom} (vendeur {vendeur.id}, template {template.nom})")
    return {'success': True, 'message': 'Boutique créée avec succès', 'boutique': boutique.to_dict()}


def update_boutique(vendeur, boutique_id, data):
    boutique, error = get_owned_boutique(vendeur, boutique_id)
    if error:
        return error

    errors = _validate_boutique(data, partial=True)
    if errors:
        return _error('Erreurs de validation', errors=errors)
    if 'url_personnalisee' in data and not _check_url_available(data.get('url_personnalisee'), boutique.id):
        return _error('Cette URL personnalisée est déjà utilisée', 'conflict')

    for field in ('description', 'logo', 'banniere', 'couleur_theme', 'statut'):
        if field in data:
            setattr(boutique, field, data[field])
    if 'nom' in data:
        boutique.nom = data['nom'].strip()
    if 'url_personnalisee' in data:
        boutique.url_personnalisee = data['url_personnalisee'] or None

    db.session.commit()
    return {'success': True, 'message': 'Boutique mise à jour avec succès', 'boutique': boutique.to_dict()}


def change_boutique_template(vendeur, boutique_id, template_id):
    boutique, error = get_owned_boutique(vendeur, boutique_id)
    if error:
        return error
    if not template_id:
        return _error('Template requis', errors=[{'field': 'template_id', 'message': 'Template requis'}])

    template, error = _check_template(vendeur, template_id)
    if error:
        return error

    boutique.template_id = template.id
    db.session.commit()
    return {'success': True, 'message': f'Template {template.nom} appliqué', 'boutique': boutique.to_dict()}


def _products_in_open_orders(product_ids):
    if not product_ids:
        return 0
    return CartLine.query.join(Cart, Cart.id == CartLine.panier_id).filter(
        CartLine.produit_id.in_(product_ids),
        Cart.statut.in_(OPEN_ORDER_STATUSES)
    ).count()


def _detach_product_from_carts(produit):
    """Retire le produit des paniers actifs ; les commandes gardent leurs instantanés"""
    lignes = CartLine.query.join(Cart, Cart.id == CartLine.panier_id).filter(
        CartLine.produit_id == produit.id, Cart.statut == 'actif'
    ).all()
    paniers = set()
    for ligne in lignes:
        paniers.add(ligne.panier)
        ligne.panier.lignes.remove(ligne)
    for panier in paniers:
        compute_total(panier)
    db.session.flush()
    db.session.expire(produit, ['lignes_panier'])


def delete_boutique(vendeur, boutique_id):
    boutique, error = get_owned_boutique(vendeur, boutique_id)
    if error:
        return error

    produits = list(boutique.produits)
    if _products_in_open_orders([produit.id for produit in produits]):
        return _error('Impossible de supprimer: des produits de cette boutique sont dans des commandes en cours')

    for produit in produits:
        _detach_product_from_carts(produit)
    nom = boutique.nom
    db.session.delete(boutique)
    db.session.commit()
    print(f"[DB] Boutique supprimée: {nom} (vendeur {vendeur.id})")
    return {'success': True, 'message': 'Boutique supprimée avec succès'}


def list_boutiques(search=None, vendeur_id=None, page=1, limit=20):
    query = Boutique.query.filter(Boutique.statut == 'active')
    if search:
        motif = f'%{search}%'
        query = query.filter(or_(Boutique.nom.ilike(motif), Boutique.description.ilike(motif)))
    if vendeur_id:
        query = query.filter(Boutique.vendeur_id == vendeur_id)

    pagination = query.order_by(Boutique.nombre_ventes.desc(), Boutique.created_at.desc()).paginate(
        page=page, per_page=limit, error_out=False)
    return {
        'success': True,
        'message': 'Boutiques récupérées avec succès',
        'boutiques': [boutique.to_dict(include_vendeur=True) for boutique in pagination.items],
        'pagination': pagination_meta(page, limit, pagination.total or 0)
    }


def get_boutique_detail(boutique_id, count_visit=True):
    boutique = get_boutique_by_id(boutique_id)
    if boutique is None or boutique.statut != 'active':
        return _error('Boutique non trouvée', 'not_found')

    if count_visit:
        db.session.execute(
            Boutique.__table__.update()
            .where(Boutique.id == boutique.id)
            .values(nombre_visites=func.coalesce(Boutique.nombre_visites, 0) + 1)
        )
        db.session.commit()
        db.session.refresh(boutique)

    data = boutique.to_dict(include_vendeur=True)
    data['nombre_produits'] = Product.query.filter_by(boutique_id=boutique.id, statut='actif').count()
    return {'success': True, 'message': 'Boutique récupérée avec succès', 'boutique': data}


def get_boutique_statistics(vendeur, boutique_id):
    boutique, error = get_owned_boutique(vendeur, boutique_id)
    if error:
        return error

    produits = Product.query.filter_by(boutique_id=boutique.id).all()
    ca = db.session.execute(
        select(func.sum(CartLine.sous_total))
        .join(Cart, Cart.id == CartLine.panier_id)
        .join(Product, Product.id == CartLine.produit_id)
        .where(Product.boutique_id == boutique.id, Cart.statut.in_(SOLD_STATUSES))
    ).scalar()

    return {
        'success': True,
        'message': 'Statistiques de la boutique',
        'statistiques': {
            'nombre_visites': boutique.nombre_visites or 0,
            'nombre_ventes': boutique.nombre_ventes or 0,
            'chiffre_affaires': float(ca or 0),
            'nombre_produits': len(produits),
            'produits_actifs': sum(1 for produit in produits if produit.statut == 'actif'),
            'produits_epuises': sum(1 for produit in produits if produit.is_out_of_stock()),
            'vues_produits': sum(produit.nombre_vues or 0 for produit in produits)
        }
    }


# =============================================
# FONCTIONS PRODUITS
# =============================================

def get_product_by_id(product_id):
    """Récupérer un produit par ID"""
    return db.session.get(Product, product_id)


def search_products(criteres, page=1, limit=20):
    """Rechercher des produits actifs (texte, prix, catégorie, boutique, disponibilité, tri)"""
    query = Product.query.join(Boutique, Boutique.id == Product.boutique_id).filter(
        Product.statut == 'actif', Boutique.statut == 'active'
    )

    texte = criteres.get('search')
    if texte:
        motif = f'%{texte}%'
        query = query.filter(or_(Product.nom.ilike(motif), Product.description.ilike(motif)))
    if criteres.get('prix_min') is not None:
        query = query.filter(Product.prix >= criteres['prix_min'])
    if criteres.get('prix_max') is not None:
        query = query.filter(Product.prix <= criteres['prix_max'])

    categorie = criteres.get('categorie')
    if isinstance(categorie, (list, tuple, set)):
        query = query.filter(Product.categorie_id.in_(list(categorie)))
    elif categorie:
        query = query.filter(Product.categorie_id == categorie)

    if criteres.get('boutique_id'):
        query = query.filter(Product.boutique_id == criteres['boutique_id'])
    if criteres.get('disponibles_uniquement'):
        query = query.filter(Product.stock > 0)
    if criteres.get('exclure'):
        query = query.filter(Product.id.notin_(list(criteres['exclure'])))

    tri = criteres.get('tri')
    if tri == 'prix_asc':
        query = query.order_by(Product.prix.asc())
    elif tri == 'prix_desc':
        query = query.order_by(Product.prix.desc())
    elif tri == 'popularite':
        query = query.order_by(Product.nombre_ventes.desc(), Product.nombre_vues.desc())
    elif tri == 'recent':
        query = query.order_by(Product.created_at.desc())
    else:
        query = query.order_by(Product.nom.asc())

    pagination = query.paginate(page=page, per_page=limit, error_out=False)
    return {
        'success': True,
        'message': 'Produits récupérés avec succès',
        'produits': [produit.to_dict() for produit in pagination.items],
        'pagination': pagination_meta(page, limit, pagination.total or 0)
    }


def increment_views(produit):
    db.session.execute(
        Product.__table__.update()
        .where(Product.id == produit.id)
        .values(nombre_vues=func.coalesce(Product.nombre_vues, 0) + 1)
    )
    db.session.commit()
    db.session.refresh(produit)


def get_product_detail(product_id, count_view=True):
    produit = get_product_by_id(product_id)
    if produit is None or produit.statut == 'suspendu':
        return _error('Produit non trouvé', 'not_found')
    if count_view:
        increment_views(produit)
    return {'success': True, 'message': 'Produit récupéré avec succès', 'produit': produit.to_dict(detailed=True)}


def get_popular_products(limite=10, jours=30):
    """Produits actifs classés par quantités réellement vendues sur la période"""
    date_debut = datetime.utcnow() - timedelta(days=jours)
    ventes = (
        select(CartLine.produit_id.label('produit_id'),
               func.sum(CartLine.quantite).label('quantite'),
               func.sum(CartLine.sous_total).label('montant'))
        .join(Cart, Cart.id == CartLine.panier_id)
        .where(Cart.statut.in_(SOLD_STATUSES), Cart.date_validation >= date_debut)
        .group_by(CartLine.produit_id)
        .subquery()
    )
    quantite = func.coalesce(ventes.c.quantite, 0)
    rows = db.session.execute(
        select(Product, quantite, func.coalesce(ventes.c.montant, 0))
        .outerjoin(ventes, ventes.c.produit_id == Product.id)
        .where(Product.statut == 'actif')
        .order_by(quantite.desc(), Product.nombre_vues.desc())
        .limit(limite)
    ).all()

    produits = []
    for produit, quantite_vendue, montant in rows:
        data = produit.to_dict()
        data['ventes_periode'] = int(quantite_vendue or 0)
        data['ca_periode'] = float(montant or 0)
        produits.append(data)

    return {'success': True, 'message': 'Produits populaires', 'periode_jours': jours, 'produits': produits}


def get_recommendations(client_id, limite=10):
    """Produits populaires des catégories déjà achetées par le client"""
    categories = db.session.execute(
        select(Product.categorie_id).distinct()
        .join(CartLine, CartLine.produit_id == Product.id)
        .join(Cart, Cart.id == CartLine.panier_id)
        .where(Cart.client_id == client_id, Cart.statut.in_(SOLD_STATUSES))
    ).scalars().all()

    criteres = {'disponibles_uniquement': True, 'tri': 'popularite'}
    if categories:
        criteres['categorie'] = categories
    resultat = search_products(criteres, page=1, limit=limite)

    return {
        'success': True,
        'message': "Recommandations basées sur votre historique d'achats" if categories else 'Produits populaires',
        'categories_favorites': categories,
        'produits': resultat['produits']
    }


def get_owned_product(vendeur, product_id):
    produit = get_product_by_id(product_id)
    if produit is None:
        return None, _error('Produit non trouvé', 'not_found')
    if produit.boutique.vendeur_id != vendeur.id:
        return None, _error('Vous ne pouvez accéder qu\'à vos propres produits', 'forbidden')
    return produit, None


def list_vendor_products(vendeur, boutique_id=None, statut=None, page=1, limit=20):
    query = Product.query.join(Boutique, Boutique.id == Product.boutique_id).filter(Boutique.vendeur_id == vendeur.id)
    if boutique_id:
        query = query.filter(Product.boutique_id == boutique_id)
    if statut:
        query = query.filter(Product.statut == statut)

    pagination = query.order_by(Product.created_at.desc()).paginate(page=page, per_page=limit, error_out=False)
    return {
        'success': True,
        'message': 'Produits récupérés avec succès',
        'produits': [produit.to_dict() for produit in pagination.items],
        'pagination': pagination_meta(page, limit, pagination.total or 0)
    }


def _validate_product(data, partial=False):
    errors = []
    if not partial or 'nom' in data:
        _check_length(errors, data, 'nom', 2, 100)
    if not partial or 'prix' in data:
        if data.get('prix') is None:
            errors.append({'field': 'prix', 'message': 'Le prix est requis'})
        else:
            _parse_price(errors, data.get('prix'))
    if 'stock' in data:
        _parse_stock(errors, data.get('stock'))
    if not partial or 'categorie_id' in data:
        categorie = get_category_by_id(data.get('categorie_id')) if data.get('categorie_id') else None
        if categorie is None:
            errors.append({'field': 'categorie_id', 'message': 'Catégorie introuvable'})
    if data.get('statut') and data['statut'] not in Product.STATUTS:
        errors.append({'field': 'statut', 'message': f"Valeurs autorisées: {', '.join(Product.STATUTS)}"})
    if 'tags' in data and data['tags'] is not None and not isinstance(data['tags'], list):
        errors.append({'field': 'tags', 'message': 'Liste attendue'})
    return errors


def create_product(vendeur, data):
    boutique, error = get_owned_boutique(vendeur, data.get('boutique_id'))
    if error:
        return error

    errors = _validate_product(data)
    if errors:
        return _error('Erreurs de validation', errors=errors)

    count, limite = product_limit_status(vendeur, boutique.id)
    if count >= limite:
        return _error(f'Votre grade {vendeur.grade.nom} limite à {limite} produits par boutique', 'forbidden')

    produit = Product(
        boutique_id=boutique.id,
        categorie_id=data['categorie_id'],
        nom=data['nom'].strip(),
        description=data.get('description'),
        prix=to_decimal(data['prix']),
        stock=int(data.get('stock') or 0),
        statut=data.get('statut') or 'actif'
    )
    produit.set_tags(data.get('tags'))
    db.session.add(produit)
    db.session.flush()

    for index, url in enumerate(data.get('images') or []):
        produit.add_image(url, est_principale=index == 0)

    db.session.commit()
    print(f"[DB] ✅ Produit créé: {produit.nom} (boutique {boutique.id}, stock {produit.stock})")
    return {'success': True, 'message': 'Produit créé avec succès', 'produit': produit.to_dict(detailed=True)}


def update_product(vendeur, product_id, data):
    produit, error = get_owned_product(vendeur, product_id)
    if error:
        return error

    errors = _validate_product(data, partial=True)
    if errors:
        return _error('Erreurs de validation', errors=errors)

    if 'nom' in data:
        produit.nom = data['nom'].strip()
    if 'description' in data:
        produit.description = data['description']
    if 'prix' in data:
        produit.prix = to_decimal(data['prix'])
    if 'stock' in data:
        produit.stock = int(data['stock'])
    if 'categorie_id' in data:
        produit.categorie_id = data['categorie_id']
    if 'statut' in data:
        produit.statut = data['statut']
    if 'tags' in data:
        produit.set_tags(data['tags'])

    db.session.commit()
    return {'success': True, 'message': 'Produit mis à jour avec succès', 'produit': produit.to_dict(detailed=True)}


def delete_product(vendeur, product_id):
    produit, error = get_owned_product(vendeur, product_id)
    if error:
        return error

    if _products_in_open_orders([produit.id]):
        return _error('Impossible de supprimer un produit présent dans une commande en cours')

    _detach_product_from_carts(produit)
    db.session.delete(produit)
    db.session.commit()
    print(f"[DB] Produit {product_id} supprimé par le vendeur {vendeur.id}")
    return {'success': True, 'message': 'Produit supprimé avec succès'}


def set_product_stock(vendeur, product_id, stock):
    produit, error = get_owned_product(vendeur, product_id)
    if error:
        return error

    errors = []
    stock = _parse_stock(errors, stock)
    if errors:
        return _error('Stock invalide', errors=errors)

    result = produit.set_stock(stock)
    db.session.commit()
    print(f"[STOCK] Inventaire produit {produit.id}: {result['ancien_stock']} -> {result['nouveau_stock']}")
    return result


def reserve_product_stock(vendeur, product_id, quantite):
    produit, error = get_owned_product(vendeur, product_id)
    if error:
        return error
    try:
        quantite = int(quantite)
    except (TypeError, ValueError):
        return _error('Quantité invalide', errors=[{'field': 'quantite', 'message': 'Entier positif attendu'}])

    result = produit.reserve_stock(quantite)
    if result['success']:
        db.session.commit()
    else:
        db.session.rollback()
    return result


def release_product_stock(vendeur, product_id, quantite):
    produit, error = get_owned_product(vendeur, product_id)
    if error:
        return error
    try:
        quantite = int(quantite)
    except (TypeError, ValueError):
        return _error('Quantité invalide', errors=[{'field': 'quantite', 'message': 'Entier positif attendu'}])

    result = produit.release_stock(quantite)
    if result['success']:
        db.session.commit()
    return result


def stock_report(vendeur):
    """Produits du vendeur classés en épuisés, critiques et suffisants"""
    produits = Product.query.join(Boutique, Boutique.id == Product.boutique_id).filter(
        Boutique.vendeur_id == vendeur.id
    ).order_by(Product.stock.asc()).all()

    rapport = {'epuises': [], 'critiques': [], 'ok': []}
    for produit in produits:
        entree = {'id': produit.id, 'nom': produit.nom, 'boutique_id': produit.boutique_id, 'stock': produit.stock}
        if produit.is_out_of_stock():
            rapport['epuises'].append(entree)
        elif produit.is_stock_critical(STOCK_CRITIQUE_SEUIL):
            rapport['critiques'].append(entree)
        else:
            rapport['ok'].append(entree)
    return rapport


def add_product_image(vendeur, product_id, data):
    produit, error = get_owned_product(vendeur, product_id)
    if error:
        return error
    result = produit.add_image(data.get('url'), data.get('description'), bool(data.get('est_principale')))
    if result['success']:
        db.session.commit()
    return result


def remove_product_image(vendeur, product_id, image_id):
    produit, error = get_owned_product(vendeur, product_id)
    if error:
        return error
    result = produit.remove_image(image_id)
    if result['success']:
        db.session.commit()
    return result


def set_product_primary_image(vendeur, product_id, image_id):
    produit, error = get_owned_product(vendeur, product_id)
    if error:
        return error
    result = produit.set_primary_image(image_id)
    if result['success']:
        db.session.commit()
    return result


def get_product_images(product_id):
    produit = get_product_by_id(product_id)
    if produit is None:
        return _error('Produit non trouvé', 'not_found')
    return {
        'success': True,
        'message': 'Images récupérées avec succès',
        'images': [image.to_dict() for image in produit.images]
    }
