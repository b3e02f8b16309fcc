#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Cycle de vie du panier : mutations, validation en commande et transitions de statut
Le stock n'est décrémenté qu'à la validation et libéré à l'annulation
"""

from datetime import datetime, timedelta
from decimal import Decimal
from sqlalchemy import func, select

from models import db, Cart, CartLine, Product, User, to_decimal
from grade_helpers import record_sale, revert_sale
from message_helpers import send_notification

ADRESSE_MIN_LENGTH = 10
ADRESSE_MAX_LENGTH = 500

# Statuts qu'un vendeur peut appliquer à une commande contenant ses produits
VENDOR_ORDER_STATUSES = ('expedie', 'livre', 'annule')


def _error(message, error='validation', **extra):
    result = {'success': False, 'error': error, 'message': message}
    result.update(extra)
    return result


def _parse_quantity(quantity):
    try:
        return int(quantity)
    except (TypeError, ValueError):
        return None


def get_active_cart(client_id):
    """Récupère le panier actif du client ou en crée un"""
    cart = Cart.query.filter_by(client_id=client_id, statut='actif').first()
    if cart is None:
        cart = Cart(client_id=client_id, statut='actif', total=Decimal('0.00'))
        db.session.add(cart)
        db.session.commit()
        print(f"[PANIER] Nouveau panier {cart.id} créé pour le client {client_id}")
    return cart


def get_cart_line(cart, line_id):
    return CartLine.query.filter_by(id=line_id, panier_id=cart.id).first()


# =============================================
# CALCULS ET VÉRIFICATIONS
# =============================================

def compute_total(cart):
    """
    Recalcule les sous-totaux et le total du panier (sans commit)
    Returns:
        dict: total, nombre d'articles, nombre de lignes et détail des lignes
    """
    total = Decimal('0.00')
    nombre_articles = 0
    details = []

    for ligne in cart.lignes:
        sous_total = ligne.compute_subtotal()
        total += sous_total
        nombre_articles += ligne.quantite
        details.append({
            'ligne_id': ligne.id,
            'produit_id': ligne.produit_id,
            'nom_produit': ligne.nom_produit or (ligne.produit.nom if ligne.produit else None),
            'prix_unitaire': float(ligne.unit_price()),
            'quantite': ligne.quantite,
            'sous_total': float(sous_total)
        })

    cart.total = to_decimal(total)

    return {
        'success': True,
        'total': float(cart.total),
        'nombre_articles': nombre_articles,
        'nombre_lignes': len(details),
        'details': details
    }


def check_cart_validity(cart):
    """Liste les erreurs bloquantes et les avertissements (stock faible) du panier"""
    erreurs = []
    avertissements = []

    for ligne in cart.lignes:
        produit = ligne.produit
        if produit is None:
            erreurs.append(f'Produit ID {ligne.produit_id} non trouvé')
            continue

        if produit.statut != 'actif':
            erreurs.append(f"{produit.nom} n'est plus disponible")
            continue

        if produit.stock == 0:
            erreurs.append(f'{produit.nom} est en rupture de stock')
        elif produit.stock < ligne.quantite:
            erreurs.append(
                f'{produit.nom}: stock insuffisant (disponible: {produit.stock}, demandé: {ligne.quantite})'
            )
        elif produit.is_stock_critical():
            pluriel = 's' if produit.stock > 1 else ''
            avertissements.append(f'{produit.nom}: stock faible ({produit.stock} restant{pluriel})')

    nb = len(erreurs)
    return {
        'success': nb == 0,
        'est_valide': nb == 0,
        'erreurs': erreurs,
        'avertissements': avertissements,
        'message': 'Panier valide' if nb == 0 else f"{nb} erreur{'s' if nb > 1 else ''} trouvée{'s' if nb > 1 else ''}"
    }


def get_cart_summary(cart):
    calcul = compute_total(cart)
    if cart.is_active():
        db.session.commit()
    validite = check_cart_validity(cart) if cart.is_active() else {
        'est_valide': True, 'erreurs': [], 'avertissements': []
    }

    return {
        'success': True,
        'message': 'Panier récupéré avec succès',
        'resume': {
            'panier_id': cart.id,
            'client_id': cart.client_id,
            'statut': cart.statut,
            'statut_libelle': cart.status_label(),
            'total': calcul['total'],
            'nombre_articles': calcul['nombre_articles'],
            'nombre_lignes': calcul['nombre_lignes'],
            'est_valide': validite['est_valide'],
            'erreurs': validite['erreurs'],
            'avertissements': validite['avertissements'],
            'articles': [ligne.to_dict() for ligne in cart.lignes],
            'adresse_livraison': cart.adresse_livraison,
            'mode_paiement': cart.mode_paiement,
            'date_creation': cart.date_creation.strftime('%Y-%m-%d %H:%M:%S') if cart.date_creation else None,
            'date_validation': cart.date_validation.strftime('%Y-%m-%d %H:%M:%S') if cart.date_validation else None,
            'date_annulation': cart.date_annulation.strftime('%Y-%m-%d %H:%M:%S') if cart.date_annulation else None
        }
    }


# =============================================
# MUTATIONS DU PANIER ACTIF
# =============================================

def add_product(cart, product_id, quantity=1):
    """Ajoute un produit au panier ; fusionne avec la ligne existante"""
    if not cart.is_active():
        return _error('Impossible de modifier un panier validé')

    quantity = _parse_quantity(quantity)
    if quantity is None or quantity <= 0:
        return _error('La quantité doit être positive',
                      errors=[{'field': 'quantite', 'message': 'La quantité doit être un entier positif'}])

    produit = db.session.get(Product, product_id)
    if produit is None:
        return _error('Produit non trouvé', 'not_found')

    if produit.statut != 'actif':
        return _error(f"Produit indisponible: {produit.nom} n'est pas en vente")

    if not produit.verify_availability(quantity):
        return _error(f'Stock insuffisant. Disponible: {produit.stock}, Demandé: {quantity}')

    ligne = CartLine.query.filter_by(panier_id=cart.id, produit_id=produit.id).first()
    if ligne is not None:
        nouvelle_quantite = ligne.quantite + quantity
        if not produit.verify_availability(nouvelle_quantite):
            return _error(
                f'Stock insuffisant pour cette quantité. Disponible: {produit.stock}, '
                f'Total demandé: {nouvelle_quantite}'
            )
        ligne.quantite = nouvelle_quantite
        message = 'Quantité mise à jour dans le panier'
    else:
        ligne = CartLine(produit_id=produit.id, quantite=quantity)
        cart.lignes.append(ligne)
        message = 'Produit ajouté au panier'

    ligne.produit = produit
    ligne.compute_subtotal()
    calcul = compute_total(cart)
    db.session.commit()

    print(f"[PANIER] ✅ Panier {cart.id}: produit {produit.id} x{ligne.quantite} (total {calcul['total']})")
    return {
        'success': True,
        'message': message,
        'ligne': ligne.to_dict(),
        'total': calcul['total'],
        'nombre_articles': calcul['nombre_articles']
    }


def remove_line(cart, line_id):
    if not cart.is_active():
        return _error('Impossible de modifier un panier validé')

    ligne = get_cart_line(cart, line_id)
    if ligne is None:
        return _error('Ligne de panier non trouvée', 'not_found')

    nom_produit = ligne.produit.nom if ligne.produit else f'Produit {ligne.produit_id}'
    cart.lignes.remove(ligne)
    calcul = compute_total(cart)
    db.session.commit()

    return {
        'success': True,
        'message': f'{nom_produit} retiré du panier',
        'total': calcul['total'],
        'nombre_articles': calcul['nombre_articles']
    }


def update_line_quantity(cart, line_id, quantity):
    """Modifie la quantité d'une ligne ; 0 retire la ligne"""
    if not cart.is_active():
        return _error('Impossible de modifier un panier validé')

    quantity = _parse_quantity(quantity)
    if quantity is None or quantity < 0:
        return _error('La quantité ne peut pas être négative',
                      errors=[{'field': 'quantite', 'message': 'La quantité doit être un entier positif ou nul'}])

    ligne = get_cart_line(cart, line_id)
    if ligne is None:
        return _error('Ligne de panier non trouvée', 'not_found')

    if quantity == 0:
        return remove_line(cart, line_id)

    if ligne.produit.statut != 'actif':
        return _error(f"Produit indisponible: {ligne.produit.nom} n'est pas en vente")

    if not ligne.produit.verify_availability(quantity):
        return _error(f'Stock insuffisant. Disponible: {ligne.produit.stock}, Demandé: {quantity}')

    ligne.quantite = quantity
    ligne.compute_subtotal()
    calcul = compute_total(cart)
    db.session.commit()

    return {
        'success': True,
        'message': 'Quantité mise à jour',
        'ligne': ligne.to_dict(),
        'total': calcul['total'],
        'nombre_articles': calcul['nombre_articles']
    }


def clear_cart(cart):
    if not cart.is_active():
        return _error('Impossible de vider un panier validé')

    nombre_lignes = len(cart.lignes)
    for ligne in list(cart.lignes):
        cart.lignes.remove(ligne)
    cart.total = Decimal('0.00')
    db.session.commit()

    pluriel = 's' if nombre_lignes > 1 else ''
    return {
        'success': True,
        'message': f'Panier vidé ({nombre_lignes} article{pluriel} supprimé{pluriel})'
    }


# =============================================
# VALIDATION ET TRANSITIONS
# =============================================

def validate_cart(cart, shipping_info=None):
    """
    Transforme le panier actif en commande dans une seule transaction
    Réservation atomique du stock de chaque ligne, instantané du prix et du
    vendeur, compteurs de ventes et statistiques vendeur. Tout échec annule
    l'ensemble (stock, panier, statistiques).
    """
    shipping_info = shipping_info or {}

    if not cart.is_active():
        return _error('Seuls les paniers actifs peuvent être validés')

    if not cart.lignes:
        return _error('Impossible de valider un panier vide')

    validite = check_cart_validity(cart)
    if not validite['est_valide']:
        return _error(
            f"Panier invalide: {', '.join(validite['erreurs'])}",
            errors=[{'field': 'lignes', 'message': erreur} for erreur in validite['erreurs']]
        )

    adresse = (shipping_info.get('adresse_livraison') or '').strip()
    if len(adresse) < ADRESSE_MIN_LENGTH or len(adresse) > ADRESSE_MAX_LENGTH:
        return _error(
            'Adresse de livraison invalide (minimum 10 caractères)',
            errors=[{'field': 'adresse_livraison', 'message': 'Entre 10 et 500 caractères'}]
        )

    maintenant = datetime.utcnow()
    ventes_par_vendeur = {}
    boutiques_vendues = set()

    try:
        for ligne in cart.lignes:
            produit = ligne.produit
            reservation = produit.reserve_stock(ligne.quantite)
            if not reservation['success']:
                db.session.rollback()
                print(f"[PANIER] ❌ Validation du panier {cart.id} annulée: {reservation['message']}")
                return _error(f"Erreur réservation stock {produit.nom}: {reservation['message']}")

            ligne.prix_unitaire = to_decimal(produit.prix)
            ligne.nom_produit = produit.nom
            ligne.vendeur_id = produit.boutique.vendeur_id
            sous_total = ligne.compute_subtotal()

            produit.nombre_ventes = (produit.nombre_ventes or 0) + ligne.quantite
            if produit.boutique_id not in boutiques_vendues:
                produit.boutique.nombre_ventes = (produit.boutique.nombre_ventes or 0) + 1
                boutiques_vendues.add(produit.boutique_id)

            ventes_par_vendeur[ligne.vendeur_id] = ventes_par_vendeur.get(ligne.vendeur_id, Decimal('0.00')) + sous_total

        calcul = compute_total(cart)

        cart.statut = 'valide'
        cart.date_validation = maintenant
        cart.adresse_livraison = adresse
        cart.mode_paiement = shipping_info.get('mode_paiement') or None

        for vendeur_id, montant in ventes_par_vendeur.items():
            record_sale(vendeur_id, montant, maintenant.date())

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    print(f"[PANIER] ✅ Panier {cart.id} validé - total {calcul['total']} ({len(ventes_par_vendeur)} vendeur(s))")
    return {
        'success': True,
        'message': 'Panier validé avec succès',
        'commande': cart.to_dict()
    }


def change_cart_status(cart, new_status, shipping_info=None):
    """Applique une transition de statut ; l'annulation d'une commande libère le stock"""
    if new_status not in Cart.STATUTS:
        return _error('Statut non autorisé')

    if not cart.can_transition_to(new_status):
        return _error(f'Transition de {cart.statut} vers {new_status} non autorisée')

    if new_status == 'valide':
        return validate_cart(cart, shipping_info)

    ancien_statut = cart.statut
    maintenant = datetime.utcnow()

    try:
        if new_status == 'annule':
            cart.date_annulation = maintenant
            if ancien_statut in ('valide', 'expedie'):
                _release_order(cart)
        elif new_status == 'expedie':
            cart.date_expedition = maintenant
        elif new_status == 'livre':
            cart.date_livraison = maintenant

        cart.statut = new_status
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    print(f"[PANIER] Commande {cart.id}: {ancien_statut} -> {new_status}")
    return {
        'success': True,
        'message': f'Statut changé de {ancien_statut} vers {new_status}',
        'ancien_statut': ancien_statut,
        'nouveau_statut': new_status
    }


def _release_order(cart):
    """Remet en stock les quantités de la commande et retire la vente des statistiques"""
    ventes_par_vendeur = {}
    boutiques = set()

    for ligne in cart.lignes:
        produit = ligne.produit
        if produit is None:
            continue
        produit.release_stock(ligne.quantite)
        produit.nombre_ventes = max(0, (produit.nombre_ventes or 0) - ligne.quantite)
        if produit.boutique_id not in boutiques:
            produit.boutique.nombre_ventes = max(0, (produit.boutique.nombre_ventes or 0) - 1)
            boutiques.add(produit.boutique_id)
        if ligne.vendeur_id is not None:
            ventes_par_vendeur[ligne.vendeur_id] = (
                ventes_par_vendeur.get(ligne.vendeur_id, Decimal('0.00')) + to_decimal(ligne.sous_total)
            )

    jour = (cart.date_validation or datetime.utcnow()).date()
    for vendeur_id, montant in ventes_par_vendeur.items():
        revert_sale(vendeur_id, montant, jour)


def cancel_client_order(client_id, cart_id):
    """Le client peut annuler sa commande tant qu'elle n'est pas expédiée"""
    cart = Cart.query.filter_by(id=cart_id, client_id=client_id).first()
    if cart is None or cart.is_active():
        return _error('Commande non trouvée', 'not_found')

    if cart.statut != 'valide':
        return _error(f'Une commande {cart.status_label().lower()} ne peut plus être annulée')

    return change_cart_status(cart, 'annule')


def update_vendor_order_status(vendeur, cart_id, new_status):
    """Le vendeur fait avancer une commande contenant ses produits et le client est notifié"""
    if new_status not in VENDOR_ORDER_STATUSES:
        return _error(f"Statut invalide. Valeurs autorisées: {', '.join(VENDOR_ORDER_STATUSES)}",
                      errors=[{'field': 'statut', 'message': 'Statut non autorisé'}])

    cart = db.session.get(Cart, cart_id)
    if cart is None or cart.is_active() or not any(ligne.vendeur_id == vendeur.id for ligne in cart.lignes):
        return _error('Commande non trouvée', 'not_found')

    result = change_cart_status(cart, new_status)
    if result['success']:
        send_notification(
            vendeur.id,
            cart.client_id,
            f'Votre commande n°{cart.id} est maintenant: {cart.status_label()}',
            sujet=f'Commande n°{cart.id} - {cart.status_label()}',
            objet_type='commande',
            objet_id=cart.id
        )
    return result


# =============================================
# CONSULTATION
# =============================================

def get_order(client_id, cart_id):
    cart = Cart.query.filter(Cart.id == cart_id, Cart.client_id == client_id, Cart.statut != 'actif').first()
    if cart is None:
        return _error('Commande non trouvée', 'not_found')
    return {'success': True, 'message': 'Commande récupérée avec succès', 'commande': cart.to_dict()}


def get_order_history(client_id, statut=None, date_debut=None, date_fin=None, limit=50):
    query = Cart.query.filter(Cart.client_id == client_id, Cart.statut != 'actif')
    if statut:
        query = query.filter(Cart.statut == statut)
    if date_debut and date_fin:
        query = query.filter(Cart.date_validation.between(date_debut, date_fin))

    commandes = query.order_by(Cart.date_validation.desc()).limit(limit).all()
    return {
        'success': True,
        'message': 'Historique récupéré avec succès',
        'commandes': [commande.to_dict() for commande in commandes]
    }


def get_vendor_orders(vendeur_id, statut=None, limit=50):
    """Commandes contenant au moins une ligne du vendeur, avec le sous-total du vendeur"""
    lignes_vendeur = select(CartLine.panier_id).where(CartLine.vendeur_id == vendeur_id)
    query = Cart.query.filter(Cart.statut != 'actif', Cart.id.in_(lignes_vendeur))
    if statut:
        query = query.filter(Cart.statut == statut)

    commandes = []
    for commande in query.order_by(Cart.date_validation.desc()).limit(limit).all():
        lignes = [ligne for ligne in commande.lignes if ligne.vendeur_id == vendeur_id]
        client = db.session.get(User, commande.client_id)
        commandes.append({
            'id': commande.id,
            'statut': commande.statut,
            'statut_libelle': commande.status_label(),
            'date_validation': commande.date_validation.strftime('%Y-%m-%d %H:%M:%S') if commande.date_validation else None,
            'adresse_livraison': commande.adresse_livraison,
            'mode_paiement': commande.mode_paiement,
            'client': {'nom': client.nom, 'email': client.email} if client else None,
            'total_vendeur': float(sum((to_decimal(ligne.sous_total) for ligne in lignes), Decimal('0.00'))),
            'articles': [ligne.to_dict() for ligne in lignes]
        })

    return {'success': True, 'message': 'Commandes récupérées avec succès', 'commandes': commandes}


def search_carts(criteres, page=1, limit=20):
    """Recherche administrateur des paniers et commandes"""
    query = Cart.query

    if criteres.get('statut'):
        query = query.filter(Cart.statut == criteres['statut'])
    if criteres.get('client_id'):
        query = query.filter(Cart.client_id == criteres['client_id'])
    if criteres.get('date_debut') and criteres.get('date_fin'):
        colonne = Cart.date_creation if criteres.get('statut') == 'actif' else Cart.date_validation
        query = query.filter(colonne.between(criteres['date_debut'], criteres['date_fin']))
    if criteres.get('montant_min') is not None:
        query = query.filter(Cart.total >= criteres['montant_min'])
    if criteres.get('montant_max') is not None:
        query = query.filter(Cart.total <= criteres['montant_max'])

    tri = criteres.get('tri')
    if tri == 'total_asc':
        query = query.order_by(Cart.total.asc())
    elif tri == 'total_desc':
        query = query.order_by(Cart.total.desc())
    elif tri == 'date_asc':
        query = query.order_by(Cart.date_creation.asc())
    else:
        query = query.order_by(Cart.date_creation.desc())

    pagination = query.paginate(page=page, per_page=limit, error_out=False)

    paniers = []
    for panier in pagination.items:
        utilisateur = db.session.get(User, panier.client_id)
        data = panier.to_dict(include_lines=False)
        data['client'] = {'nom': utilisateur.nom, 'email': utilisateur.email} if utilisateur else None
        paniers.append(data)

    return {
        'success': True,
        'message': 'Recherche effectuée avec succès',
        'paniers': paniers,
        'total': pagination.total or 0
    }


def get_global_cart_statistics(date_debut=None, date_fin=None):
    date_fin = date_fin or datetime.utcnow()
    date_debut = date_debut or (date_fin - timedelta(days=30))

    par_statut = db.session.execute(
        select(Cart.statut, func.count(Cart.id), func.sum(Cart.total), func.avg(Cart.total))
        .where(Cart.date_creation.between(date_debut, date_fin))
        .group_by(Cart.statut)
    ).all()

    jour = func.date(Cart.date_validation)
    evolution = db.session.execute(
        select(jour, func.count(Cart.id), func.sum(Cart.total))
        .where(Cart.statut != 'actif', Cart.date_validation.between(date_debut, date_fin))
        .group_by(jour)
        .order_by(jour)
    ).all()

    total_paniers = sum(row[1] for row in par_statut)
    total_montant = sum(float(row[2] or 0) for row in par_statut)

    return {
        'success': True,
        'message': 'Statistiques récupérées avec succès',
        'periode': {'debut': date_debut.strftime('%Y-%m-%d'), 'fin': date_fin.strftime('%Y-%m-%d')},
        'statistiques': {
            'global': {
                'total_paniers': total_paniers,
                'total_montant': round(total_montant, 2),
                'montant_moyen': round(total_montant / total_paniers, 2) if total_paniers else 0
            },
            'par_statut': [
                {
                    'statut': statut,
                    'nombre': nombre,
                    'total_montant': round(float(somme or 0), 2),
                    'montant_moyen': round(float(moyenne or 0), 2)
                }
                for statut, nombre, somme, moyenne in par_statut
            ],
            'evolution_journaliere': [
                {'date': str(date_jour), 'commandes': nombre, 'chiffre_affaires': round(float(somme or 0), 2)}
                for date_jour, nombre, somme in evolution
            ]
        }
    }


def purge_abandoned_carts(jours_inactivite=30):
    """Supprime les paniers actifs créés il y a plus de N jours"""
    date_limite = datetime.utcnow() - timedelta(days=jours_inactivite)
    try:
        paniers = Cart.query.filter(Cart.statut == 'actif', Cart.date_creation < date_limite).all()
        for panier in paniers:
            db.session.delete(panier)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        print(f"[PANIER] ❌ Erreur lors du nettoyage des paniers abandonnés: {str(e)}")
        return _error('Erreur lors du nettoyage des paniers', 'server')

    print(f"[PANIER] 🧹 {len(paniers)} panier(s) abandonné(s) nettoyé(s)")
    return {
        'success': True,
        'message': f'{len(paniers)} panier(s) abandonné(s) nettoyé(s)',
        'nombre_nettoyes': len(paniers),
        'date_limite': date_limite.strftime('%Y-%m-%d')
    }
