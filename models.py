#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Models - Modèles de base de données de la marketplace multi-boutiques
Utilise SQLAlchemy (Flask-SQLAlchemy) pour la gestion de la base de données
"""

from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import generate_password_hash, check_password_hash
from sqlalchemy import update
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
import json

db = SQLAlchemy()

CENTS = Decimal('0.01')

# Seuil en dessous duquel un stock est considéré comme critique
STOCK_CRITIQUE_SEUIL = 5


def to_decimal(value):
    """Convertit une valeur (str, float, int, Decimal) en Decimal arrondi au centime"""
    if value is None:
        return Decimal('0.00')
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def format_date(value, fmt='%Y-%m-%d %H:%M:%S'):
    return value.strftime(fmt) if value else None


class User(db.Model):
    """Modèle pour les utilisateurs (clients, vendeurs, administrateurs)"""
    __tablename__ = 'utilisateurs'

    id = db.Column(db.Integer, primary_key=True)
    nom = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='client')  # client, vendeur, admin
    statut = db.Column(db.String(20), nullable=False, default='actif')  # actif, suspendu
    derniere_connexion = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relations (la suppression de l'utilisateur supprime son profil)
    client = db.relationship('Client', backref='utilisateur', uselist=False,
                             cascade='all, delete-orphan')
    vendeur = db.relationship('Vendor', backref='utilisateur', uselist=False,
                              cascade='all, delete-orphan')
    sessions = db.relationship('AuthSession', backref='utilisateur', lazy=True,
                               cascade='all, delete-orphan')

    ROLES = ('client', 'vendeur', 'admin')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def is_active(self):
        return self.statut == 'actif'

    def to_dict(self, include_profile=False):
        data = {
            'id': self.id,
            'nom': self.nom,
            'email': self.email,
            'role': self.role,
            'statut': self.statut,
            'derniere_connexion': format_date(self.derniere_connexion),
            'created_at': format_date(self.created_at, '%Y-%m-%d')
        }
        if include_profile:
            data['client'] = self.client.to_dict() if self.client else None
            data['vendeur'] = self.vendeur.to_dict() if self.vendeur else None
        return data


class Client(db.Model):
    """Profil client (même identifiant que l'utilisateur)"""
    __tablename__ = 'clients'

    id = db.Column(db.Integer, db.ForeignKey('utilisateurs.id', ondelete='CASCADE'), primary_key=True)
    adresse = db.Column(db.Text, nullable=True)
    telephone = db.Column(db.String(20), nullable=True)

    paniers = db.relationship('Cart', backref='client', lazy=True, cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'adresse': self.adresse,
            'telephone': self.telephone
        }


class Vendor(db.Model):
    """Profil vendeur (même identifiant que l'utilisateur)"""
    __tablename__ = 'vendeurs'

    id = db.Column(db.Integer, db.ForeignKey('utilisateurs.id', ondelete='CASCADE'), primary_key=True)
    numero_fiscal = db.Column(db.String(50), nullable=True)
    grade_id = db.Column(db.Integer, db.ForeignKey('grade_vendeur.id'), nullable=False)

    boutiques = db.relationship('Boutique', backref='vendeur', lazy=True, cascade='all, delete-orphan')
    statistiques = db.relationship('SalesStatistic', backref='vendeur', lazy=True,
                                   cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'numero_fiscal': self.numero_fiscal,
            'grade_id': self.grade_id,
            'grade': self.grade.nom if self.grade else None
        }


class SellerGrade(db.Model):
    """Modèle pour les grades vendeur (Bronze, Argent, Or, Platine)"""
    __tablename__ = 'grade_vendeur'

    id = db.Column(db.Integer, primary_key=True)
    nom = db.Column(db.String(100), nullable=False, unique=True)
    niveau = db.Column(db.Integer, nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    # Conditions d'obtention
    ventes_minimum = db.Column(db.Integer, nullable=False, default=0)
    ca_minimum = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal('0.00'))
    duree_minimum_jours = db.Column(db.Integer, nullable=False, default=0)

    # Avantages
    max_boutiques = db.Column(db.Integer, nullable=False, default=1)
    max_produits_par_boutique = db.Column(db.Integer, nullable=False, default=10)
    commission_reduite = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal('0.00'))
    templates_disponibles = db.Column(db.Text, nullable=True)  # JSON
    avantages = db.Column(db.Text, nullable=True)  # JSON

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    vendeurs = db.relationship('Vendor', backref='grade', lazy=True)
    templates = db.relationship('Template', backref='grade_requis', lazy=True)

    def get_templates_disponibles(self):
        if self.templates_disponibles:
            return json.loads(self.templates_disponibles)
        return []

    def set_templates_disponibles(self, template_ids):
        self.templates_disponibles = json.dumps(list(template_ids))

    def get_avantages(self):
        if self.avantages:
            return json.loads(self.avantages)
        return []

    def set_avantages(self, avantages_list):
        self.avantages = json.dumps(avantages_list)

    def to_dict(self):
        return {
            'id': self.id,
            'nom': self.nom,
            'niveau': self.niveau,
            'description': self.description,
            'conditions': {
                'ventes_minimum': self.ventes_minimum,
                'ca_minimum': float(self.ca_minimum or 0),
                'duree_minimum_jours': self.duree_minimum_jours
            },
            'avantages': {
                'max_boutiques': self.max_boutiques,
                'max_produits_par_boutique': self.max_produits_par_boutique,
                'commission_reduite': float(self.commission_reduite or 0),
                'templates_disponibles': self.get_templates_disponibles(),
                'avantages_speciaux': self.get_avantages()
            }
        }


class Template(db.Model):
    """Modèle pour les templates de boutique"""
    __tablename__ = 'templates'

    id = db.Column(db.Integer, primary_key=True)
    nom = db.Column(db.String(100), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    grade_requis_id = db.Column(db.Integer, db.ForeignKey('grade_vendeur.id'), nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    boutiques = db.relationship('Boutique', backref='template', lazy=True)

    def is_allowed_for(self, grade):
        """Un template est accessible si le grade le liste ou s'il est de niveau suffisant"""
        if grade is None:
            return False
        if self.id in grade.get_templates_disponibles():
            return True
        return self.grade_requis is not None and grade.niveau >= self.grade_requis.niveau

    def to_dict(self):
        return {
            'id': self.id,
            'nom': self.nom,
            'description': self.description,
            'grade_requis_id': self.grade_requis_id,
            'grade_requis_nom': self.grade_requis.nom if self.grade_requis else None
        }


class Boutique(db.Model):
    """Modèle pour les boutiques des vendeurs"""
    __tablename__ = 'boutiques'

    id = db.Column(db.Integer, primary_key=True)
    vendeur_id = db.Column(db.Integer, db.ForeignKey('vendeurs.id', ondelete='CASCADE'), nullable=False)
    template_id = db.Column(db.Integer, db.ForeignKey('templates.id'), nullable=False, default=1)

    nom = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    logo = db.Column(db.String(500), nullable=True)
    banniere = db.Column(db.String(500), nullable=True)
    couleur_theme = db.Column(db.String(7), default='#007bff')
    url_personnalisee = db.Column(db.String(100), unique=True, nullable=True)

    statut = db.Column(db.String(20), default='active')  # active, suspendue, fermee

    # Compteurs
    nombre_visites = db.Column(db.Integer, default=0)
    nombre_ventes = db.Column(db.Integer, default=0)
    note_moyenne = db.Column(db.Numeric(3, 2), default=Decimal('0.00'))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    produits = db.relationship('Product', backref='boutique', lazy=True, cascade='all, delete-orphan')

    STATUTS = ('active', 'suspendue', 'fermee')

    def to_dict(self, include_vendeur=False):
        data = {
            'id': self.id,
            'vendeur_id': self.vendeur_id,
            'template_id': self.template_id,
            'template': self.template.nom if self.template else None,
            'nom': self.nom,
            'description': self.description,
            'logo': self.logo,
            'banniere': self.banniere,
            'couleur_theme': self.couleur_theme,
            'url_personnalisee': self.url_personnalisee,
            'statut': self.statut,
            'nombre_visites': self.nombre_visites or 0,
            'nombre_ventes': self.nombre_ventes or 0,
            'note_moyenne': float(self.note_moyenne or 0),
            'created_at': format_date(self.created_at, '%Y-%m-%d')
        }
        if include_vendeur and self.vendeur:
            data['vendeur'] = {
                'id': self.vendeur.id,
                'nom': self.vendeur.utilisateur.nom,
                'grade': self.vendeur.grade.nom if self.vendeur.grade else None
            }
        return data


class Category(db.Model):
    """Modèle pour les catégories de produits (hiérarchie simple par parent_id)"""
    __tablename__ = 'categories'

    id = db.Column(db.Integer, primary_key=True)
    nom = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    image = db.Column(db.String(500), nullable=True)
    couleur = db.Column(db.String(7), default='#007bff')
    parent_id = db.Column(db.Integer, db.ForeignKey('categories.id'), nullable=True)
    statut = db.Column(db.String(20), default='active')  # active, inactive
    ordre_affichage = db.Column(db.Integer, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    sous_categories = db.relationship('Category', backref=db.backref('parent', remote_side=[id]), lazy=True)
    produits = db.relationship('Product', backref='categorie', lazy=True)

    def to_dict(self, nombre_produits=None):
        data = {
            'id': self.id,
            'nom': self.nom,
            'description': self.description,
            'image': self.image,
            'couleur': self.couleur,
            'parent_id': self.parent_id,
            'statut': self.statut,
            'ordre_affichage': self.ordre_affichage
        }
        if nombre_produits is not None:
            data['nombre_produits'] = nombre_produits
        return data


class Product(db.Model):
    """Modèle pour les produits"""
    __tablename__ = 'produits'
    __table_args__ = (db.CheckConstraint('stock >= 0', name='ck_produits_stock_positif'),)

    id = db.Column(db.Integer, primary_key=True)
    boutique_id = db.Column(db.Integer, db.ForeignKey('boutiques.id', ondelete='CASCADE'), nullable=False)
    categorie_id = db.Column(db.Integer, db.ForeignKey('categories.id'), nullable=False)

    nom = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    prix = db.Column(db.Numeric(10, 2), nullable=False)
    stock = db.Column(db.Integer, nullable=False, default=0)
    statut = db.Column(db.String(20), nullable=False, default='actif')  # actif, inactif, suspendu
    tags = db.Column(db.Text, nullable=True)  # JSON

    # Statistiques
    nombre_vues = db.Column(db.Integer, default=0)
    nombre_ventes = db.Column(db.Integer, default=0)
    note_moyenne = db.Column(db.Numeric(3, 2), default=Decimal('0.00'))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    images = db.relationship('ProductImage', backref='produit', lazy=True,
                             cascade='all, delete-orphan', order_by='ProductImage.id')
    lignes_panier = db.relationship('CartLine', backref='produit', lazy=True)

    STATUTS = ('actif', 'inactif', 'suspendu')

    def get_tags(self):
        if self.tags:
            return json.loads(self.tags)
        return []

    def set_tags(self, tags_list):
        self.tags = json.dumps(tags_list or [])

    # ---------------------------------------------
    # Garde de stock
    # ---------------------------------------------

    def verify_availability(self, quantity=1):
        return (self.stock or 0) >= quantity and self.statut == 'actif'

    def is_out_of_stock(self):
        return (self.stock or 0) == 0

    def is_stock_critical(self, seuil=STOCK_CRITIQUE_SEUIL):
        return 0 < (self.stock or 0) <= seuil

    def stock_status(self):
        """Classification du stock, calculée à la lecture et jamais persistée"""
        if self.statut != 'actif':
            return {'statut': 'inactif', 'couleur': 'gray', 'message': 'Produit non disponible'}
        if self.is_out_of_stock():
            return {'statut': 'epuise', 'couleur': 'red', 'message': 'Produit épuisé'}
        if self.is_stock_critical():
            pluriel = 's' if self.stock > 1 else ''
            return {'statut': 'critique', 'couleur': 'orange',
                    'message': f'Stock faible ({self.stock} restant{pluriel})'}
        return {'statut': 'disponible', 'couleur': 'green',
                'message': f'En stock ({self.stock} disponibles)'}

    def reserve_stock(self, quantity):
        """
        Réserve du stock (décrément atomique conditionnel)
        Ne commit pas : l'appelant contrôle la transaction
        Returns:
            dict: {'success': bool, 'message': str, ...}
        """
        if quantity is None or quantity <= 0:
            return {'success': False, 'error': 'validation', 'message': 'La quantité doit être positive'}

        result = db.session.execute(
            update(Product)
            .where(Product.id == self.id, Product.stock >= quantity, Product.statut == 'actif')
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        db.session.refresh(self, attribute_names=['stock', 'statut'])

        if result.rowcount != 1:
            print(f"[STOCK] ❌ Réservation refusée - Produit {self.id}: stock {self.stock}, demandé {quantity}")
            return {
                'success': False,
                'error': 'validation',
                'message': f'Produit indisponible. Stock: {self.stock}, Statut: {self.statut}'
            }

        print(f"[STOCK] ✅ Réservation - Produit {self.id}: -{quantity} (reste {self.stock})")
        return {
            'success': True,
            'message': 'Stock réservé avec succès',
            'quantite_reservee': quantity,
            'stock_restant': self.stock
        }

    def release_stock(self, quantity):
        """Libère du stock (incrément atomique), sans commit"""
        if quantity is None or quantity <= 0:
            return {'success': False, 'error': 'validation', 'message': 'La quantité doit être positive'}

        db.session.execute(
            update(Product)
            .where(Product.id == self.id)
            .values(stock=Product.stock + quantity)
            .execution_options(synchronize_session=False)
        )
        db.session.refresh(self, attribute_names=['stock'])

        print(f"[STOCK] ✅ Libération - Produit {self.id}: +{quantity} (total {self.stock})")
        return {
            'success': True,
            'message': 'Stock libéré avec succès',
            'quantite_liberee': quantity,
            'stock_total': self.stock
        }

    def set_stock(self, new_stock):
        """Fixe le stock (gestion d'inventaire), sans commit"""
        if new_stock is None or new_stock < 0:
            return {'success': False, 'error': 'validation', 'message': 'Le stock ne peut pas être négatif'}
        ancien_stock = self.stock
        self.stock = new_stock
        return {
            'success': True,
            'message': 'Stock mis à jour avec succès',
            'ancien_stock': ancien_stock,
            'nouveau_stock': new_stock,
            'statut_stock': self.stock_status()
        }

    # ---------------------------------------------
    # Images (exactement une image principale)
    # ---------------------------------------------

    def get_primary_image(self):
        for image in self.images:
            if image.est_principale:
                return image
        return None

    def add_image(self, url, description=None, est_principale=False):
        """Ajoute une image ; la première image devient principale"""
        if not url:
            return {'success': False, 'error': 'validation', 'message': "L'URL de l'image est requise"}

        principale = est_principale or len(self.images) == 0
        if principale:
            for image in self.images:
                image.est_principale = False

        image = ProductImage(url=url, description=description or '', est_principale=principale)
        self.images.append(image)
        db.session.flush()

        return {'success': True, 'message': 'Image ajoutée avec succès', 'image': image.to_dict()}

    def remove_image(self, image_id):
        image = next((img for img in self.images if img.id == image_id), None)
        if image is None:
            return {'success': False, 'error': 'not_found', 'message': 'Image non trouvée'}

        etait_principale = image.est_principale
        self.images.remove(image)
        db.session.flush()

        if etait_principale and self.images:
            self.images[0].est_principale = True

        return {'success': True, 'message': 'Image supprimée avec succès'}

    def set_primary_image(self, image_id):
        cible = next((img for img in self.images if img.id == image_id), None)
        if cible is None:
            return {'success': False, 'error': 'not_found', 'message': 'Image non trouvée'}

        for image in self.images:
            image.est_principale = image.id == image_id

        return {'success': True, 'message': 'Image définie comme principale', 'image': cible.to_dict()}

    def to_dict(self, detailed=False):
        image_principale = self.get_primary_image()
        data = {
            'id': self.id,
            'boutique_id': self.boutique_id,
            'categorie_id': self.categorie_id,
            'nom': self.nom,
            'description': self.description,
            'prix': float(self.prix),
            'stock': self.stock,
            'statut': self.statut,
            'tags': self.get_tags(),
            'nombre_vues': self.nombre_vues or 0,
            'nombre_ventes': self.nombre_ventes or 0,
            'note_moyenne': float(self.note_moyenne or 0),
            'statut_stock': self.stock_status(),
            'image_principale': image_principale.url if image_principale else None,
            'created_at': format_date(self.created_at, '%Y-%m-%d')
        }
        if detailed:
            data['boutique'] = {'id': self.boutique.id, 'nom': self.boutique.nom} if self.boutique else None
            data['categorie'] = {'id': self.categorie.id, 'nom': self.categorie.nom} if self.categorie else None
            data['images'] = [image.to_dict() for image in self.images]
        return data


class ProductImage(db.Model):
    """Modèle pour les images de produit"""
    __tablename__ = 'images_produit'

    id = db.Column(db.Integer, primary_key=True)
    produit_id = db.Column(db.Integer, db.ForeignKey('produits.id', ondelete='CASCADE'), nullable=False)
    url = db.Column(db.String(500), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    est_principale = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'produit_id': self.produit_id,
            'url': self.url,
            'description': self.description,
            'est_principale': self.est_principale
        }


class Cart(db.Model):
    """Modèle pour les paniers ; un panier validé devient une commande"""
    __tablename__ = 'paniers'

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey('clients.id', ondelete='CASCADE'), nullable=False)

    statut = db.Column(db.String(20), nullable=False, default='actif')  # actif, valide, expedie, livre, annule
    total = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal('0.00'))

    adresse_livraison = db.Column(db.Text, nullable=True)
    mode_paiement = db.Column(db.String(50), nullable=True)

    # Dates importantes
    date_creation = db.Column(db.DateTime, default=datetime.utcnow)
    date_validation = db.Column(db.DateTime, nullable=True)
    date_expedition = db.Column(db.DateTime, nullable=True)
    date_livraison = db.Column(db.DateTime, nullable=True)
    date_annulation = db.Column(db.DateTime, nullable=True)

    lignes = db.relationship('CartLine', backref='panier', lazy=True,
                             cascade='all, delete-orphan', order_by='CartLine.id')

    STATUTS = ('actif', 'valide', 'expedie', 'livre', 'annule')

    # Transitions autorisées ; livre et annule sont terminaux
    TRANSITIONS = {
        'actif': ('valide', 'annule'),
        'valide': ('expedie', 'annule'),
        'expedie': ('livre', 'annule'),
        'livre': (),
        'annule': ()
    }

    LIBELLES = {
        'actif': 'Panier',
        'valide': 'Commande validée',
        'expedie': 'Expédiée',
        'livre': 'Livrée',
        'annule': 'Annulée'
    }

    def is_active(self):
        return self.statut == 'actif'

    def is_order(self):
        return self.statut != 'actif'

    def can_transition_to(self, new_status):
        return new_status in self.TRANSITIONS.get(self.statut, ())

    def status_label(self):
        return self.LIBELLES.get(self.statut, self.statut)

    def items_count(self):
        return sum(ligne.quantite for ligne in self.lignes)

    def to_dict(self, include_lines=True):
        data = {
            'id': self.id,
            'client_id': self.client_id,
            'statut': self.statut,
            'statut_libelle': self.status_label(),
            'total': float(self.total or 0),
            'nombre_articles': self.items_count(),
            'adresse_livraison': self.adresse_livraison,
            'mode_paiement': self.mode_paiement,
            'date_creation': format_date(self.date_creation),
            'date_validation': format_date(self.date_validation),
            'date_expedition': format_date(self.date_expedition),
            'date_livraison': format_date(self.date_livraison),
            'date_annulation': format_date(self.date_annulation)
        }
        if include_lines:
            data['lignes'] = [ligne.to_dict() for ligne in self.lignes]
        return data


class CartLine(db.Model):
    """Modèle pour les lignes de panier"""
    __tablename__ = 'lignes_panier'
    __table_args__ = (
        db.UniqueConstraint('panier_id', 'produit_id', name='uq_ligne_panier_produit'),
        db.CheckConstraint('quantite >= 1', name='ck_lignes_panier_quantite'),
    )

    id = db.Column(db.Integer, primary_key=True)
    panier_id = db.Column(db.Integer, db.ForeignKey('paniers.id', ondelete='CASCADE'), nullable=False)
    # Nul uniquement pour une commande dont le produit a été supprimé depuis
    produit_id = db.Column(db.Integer, db.ForeignKey('produits.id', ondelete='SET NULL'), nullable=True)
    quantite = db.Column(db.Integer, nullable=False, default=1)
    sous_total = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal('0.00'))

    # Instantanés figés à la validation de la commande
    prix_unitaire = db.Column(db.Numeric(10, 2), nullable=True)
    nom_produit = db.Column(db.String(100), nullable=True)
    vendeur_id = db.Column(db.Integer, db.ForeignKey('vendeurs.id', ondelete='SET NULL'), nullable=True)

    def unit_price(self):
        """Prix figé pour une commande, prix courant du produit pour un panier"""
        if self.prix_unitaire is not None:
            return to_decimal(self.prix_unitaire)
        return to_decimal(self.produit.prix)

    def compute_subtotal(self):
        self.sous_total = to_decimal(self.unit_price() * self.quantite)
        return self.sous_total

    def to_dict(self):
        produit = self.produit
        image_principale = produit.get_primary_image() if produit else None
        return {
            'id': self.id,
            'produit_id': self.produit_id,
            'nom_produit': self.nom_produit or (produit.nom if produit else None),
            'quantite': self.quantite,
            'prix_unitaire': float(self.unit_price()) if produit or self.prix_unitaire is not None else None,
            'sous_total': float(self.sous_total or 0),
            'image': image_principale.url if image_principale else None,
            'vendeur_id': self.vendeur_id
        }


class Message(db.Model):
    """Modèle pour les messages entre utilisateurs (et les notifications)"""
    __tablename__ = 'messages'

    id = db.Column(db.Integer, primary_key=True)
    expediteur_id = db.Column(db.Integer, db.ForeignKey('utilisateurs.id', ondelete='CASCADE'),
                              nullable=False, index=True)
    destinataire_id = db.Column(db.Integer, db.ForeignKey('utilisateurs.id', ondelete='CASCADE'),
                                nullable=False, index=True)
    contenu = db.Column(db.Text, nullable=False)
    sujet = db.Column(db.String(200), nullable=True)

    date_envoi = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    lu = db.Column(db.Boolean, nullable=False, default=False)
    date_lecture = db.Column(db.DateTime, nullable=True)

    type = db.Column(db.String(20), nullable=False, default='message')  # message, notification, systeme
    priorite = db.Column(db.String(20), nullable=False, default='normale')  # basse, normale, haute, urgente
    statut = db.Column(db.String(20), nullable=False, default='envoye')  # brouillon, envoye, livre, lu, archive

    objet_type = db.Column(db.String(20), nullable=True)  # produit, commande, boutique, general
    objet_id = db.Column(db.Integer, nullable=True)

    conversation_id = db.Column(db.String(50), nullable=True, index=True)
    message_parent_id = db.Column(db.Integer, db.ForeignKey('messages.id', ondelete='SET NULL'), nullable=True)

    expediteur = db.relationship('User', foreign_keys=[expediteur_id])
    destinataire = db.relationship('User', foreign_keys=[destinataire_id])
    reponses = db.relationship('Message', backref=db.backref('message_parent', remote_side=[id]), lazy=True)

    TYPES = ('message', 'notification', 'systeme')
    PRIORITES = ('basse', 'normale', 'haute', 'urgente')
    STATUTS = ('brouillon', 'envoye', 'livre', 'lu', 'archive')
    OBJET_TYPES = ('produit', 'commande', 'boutique', 'general')

    def can_be_read_by(self, user_id):
        return user_id in (self.expediteur_id, self.destinataire_id)

    def can_be_deleted_by(self, user_id):
        return self.expediteur_id == user_id

    def summary(self):
        apercu = self.contenu if len(self.contenu) <= 100 else self.contenu[:100] + '...'
        return {
            'id': self.id,
            'sujet': self.sujet or 'Sans sujet',
            'contenu_apercu': apercu,
            'expediteur_id': self.expediteur_id,
            'destinataire_id': self.destinataire_id,
            'date_envoi': format_date(self.date_envoi),
            'lu': self.lu,
            'type': self.type,
            'priorite': self.priorite,
            'statut': self.statut
        }

    def to_dict(self):
        return {
            'id': self.id,
            'expediteur': {'id': self.expediteur.id, 'nom': self.expediteur.nom} if self.expediteur else None,
            'destinataire': {'id': self.destinataire.id, 'nom': self.destinataire.nom} if self.destinataire else None,
            'contenu': self.contenu,
            'sujet': self.sujet,
            'date_envoi': format_date(self.date_envoi),
            'lu': self.lu,
            'date_lecture': format_date(self.date_lecture),
            'type': self.type,
            'priorite': self.priorite,
            'statut': self.statut,
            'objet_type': self.objet_type,
            'objet_id': self.objet_id,
            'conversation_id': self.conversation_id,
            'message_parent_id': self.message_parent_id
        }


class SalesStatistic(db.Model):
    """Agrégat journalier des ventes d'un vendeur"""
    __tablename__ = 'statistiques_ventes'
    __table_args__ = (db.UniqueConstraint('vendeur_id', 'date', name='uq_statistique_vendeur_date'),)

    id = db.Column(db.Integer, primary_key=True)
    vendeur_id = db.Column(db.Integer, db.ForeignKey('vendeurs.id', ondelete='CASCADE'), nullable=False)
    date = db.Column(db.Date, nullable=False)
    ventes = db.Column(db.Integer, nullable=False, default=0)
    chiffre_affaires = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal('0.00'))

    def average_sale(self):
        if not self.ventes:
            return 0.0
        return round(float(self.chiffre_affaires) / self.ventes, 2)

    def to_dict(self):
        return {
            'id': self.id,
            'vendeur_id': self.vendeur_id,
            'date': self.date.isoformat() if self.date else None,
            'ventes': self.ventes,
            'chiffre_affaires': float(self.chiffre_affaires or 0),
            'ca_moyen_par_vente': self.average_sale()
        }


class AuthSession(db.Model):
    """Session d'authentification persistée (remplace la map en mémoire)"""
    __tablename__ = 'sessions_auth'

    id = db.Column(db.String(36), primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('utilisateurs.id', ondelete='CASCADE'),
                        nullable=False, index=True)
    refresh_token_hash = db.Column(db.String(64), nullable=False)
    user_agent = db.Column(db.String(255), nullable=True)
    ip = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    last_activity = db.Column(db.DateTime, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)
    revoked = db.Column(db.Boolean, nullable=False, default=False)

    def is_valid(self):
        return not self.revoked and self.expires_at > datetime.utcnow()

    def to_dict(self):
        return {
            'session_id': self.id,
            'user_agent': self.user_agent,
            'ip': self.ip,
            'created_at': format_date(self.created_at),
            'last_activity': format_date(self.last_activity),
            'expires_at': format_date(self.expires_at)
        }


class PasswordResetToken(db.Model):
    """Modèle pour les tokens de réinitialisation de mot de passe"""
    __tablename__ = 'password_reset_tokens'

    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(255), unique=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('utilisateurs.id', ondelete='CASCADE'), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    used = db.Column(db.Boolean, default=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
