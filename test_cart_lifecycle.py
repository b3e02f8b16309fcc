#!/usr/bin/env python3
"""
Tests du cycle de vie du panier : ajout, fusion des lignes, validation en commande,
annulation et transitions de statut
"""

from decimal import Decimal

import cart_helpers
from cart_helpers import (get_active_cart, add_product, remove_line, update_line_quantity, clear_cart,
                          validate_cart, change_cart_status, cancel_client_order, compute_total)
from models import db, Cart, Product, SalesStatistic, Boutique
from conftest import make_client, make_product

ADRESSE = '12 rue des Lilas, 75000 Paris'


def _stock(product_id):
    return db.session.get(Product, product_id).stock


def test_add_merge_and_reject_over_stock(client_user, produit_a):
    """A (stock 10) x3 puis +4 : une seule ligne x7 ; +5 refusé"""
    cart = get_active_cart(client_user.id)

    result = add_product(cart, produit_a.id, 3)
    assert result['success']
    assert result['total'] == 30.0

    result = add_product(cart, produit_a.id, 4)
    assert result['success']
    assert len(cart.lignes) == 1
    assert cart.lignes[0].quantite == 7
    assert result['total'] == 70.0

    result = add_product(cart, produit_a.id, 5)
    assert not result['success']
    assert result['error'] == 'validation'
    assert cart.lignes[0].quantite == 7
    assert _stock(produit_a.id) == 10


def test_add_rejects_invalid_quantity_and_unknown_product(client_user, produit_a):
    cart = get_active_cart(client_user.id)
    assert add_product(cart, produit_a.id, 0)['error'] == 'validation'
    assert add_product(cart, produit_a.id, -2)['error'] == 'validation'
    assert add_product(cart, 9999, 1)['error'] == 'not_found'
    assert cart.lignes == []


def test_add_then_remove_restores_total(client_user, produit_a, produit_b):
    cart = get_active_cart(client_user.id)
    add_product(cart, produit_a.id, 2)
    total_avant = float(cart.total)

    result = add_product(cart, produit_b.id, 1)
    ligne_b = next(ligne for ligne in cart.lignes if ligne.produit_id == produit_b.id)
    assert result['total'] == total_avant + 25.5

    result = remove_line(cart, ligne_b.id)
    assert result['success']
    assert result['total'] == total_avant


def test_update_quantity_zero_removes_line(client_user, produit_a):
    cart = get_active_cart(client_user.id)
    add_product(cart, produit_a.id, 2)
    ligne = cart.lignes[0]

    assert update_line_quantity(cart, ligne.id, -1)['error'] == 'validation'
    assert update_line_quantity(cart, ligne.id, 11)['error'] == 'validation'

    result = update_line_quantity(cart, ligne.id, 5)
    assert result['success'] and result['total'] == 50.0

    result = update_line_quantity(cart, ligne.id, 0)
    assert result['success']
    assert cart.lignes == []
    assert float(cart.total) == 0.0


def test_clear_cart(client_user, produit_a, produit_b):
    cart = get_active_cart(client_user.id)
    add_product(cart, produit_a.id, 1)
    add_product(cart, produit_b.id, 1)

    assert clear_cart(cart)['success']
    assert cart.lignes == []
    assert compute_total(cart)['total'] == 0.0


def test_validate_cart_reserves_stock_and_snapshots(client_user, vendor_user, produit_a, boutique):
    cart = get_active_cart(client_user.id)
    add_product(cart, produit_a.id, 3)

    result = validate_cart(cart, {'adresse_livraison': ADRESSE, 'mode_paiement': 'carte'})
    assert result['success']
    assert result['commande']['statut'] == 'valide'

    assert _stock(produit_a.id) == 7
    ligne = cart.lignes[0]
    assert ligne.prix_unitaire == Decimal('10.00')
    assert ligne.nom_produit == 'Produit A'
    assert ligne.vendeur_id == vendor_user.id
    assert cart.total == Decimal('30.00')
    assert cart.date_validation is not None
    assert db.session.get(Product, produit_a.id).nombre_ventes == 3
    assert db.session.get(Boutique, boutique.id).nombre_ventes == 1

    stat = SalesStatistic.query.filter_by(vendeur_id=vendor_user.id).one()
    assert stat.ventes == 1
    assert stat.chiffre_affaires == Decimal('30.00')

    # Le prix figé ne suit plus le produit
    produit = db.session.get(Product, produit_a.id)
    produit.prix = Decimal('99.00')
    db.session.commit()
    assert compute_total(cart)['total'] == 30.0


def test_validate_rejects_empty_cart_and_short_address(client_user, produit_a):
    cart = get_active_cart(client_user.id)
    assert validate_cart(cart, {'adresse_livraison': ADRESSE})['error'] == 'validation'

    add_product(cart, produit_a.id, 1)
    result = validate_cart(cart, {'adresse_livraison': 'court'})
    assert not result['success']
    assert result['errors'][0]['field'] == 'adresse_livraison'
    assert cart.statut == 'actif'
    assert _stock(produit_a.id) == 10


def test_validate_with_insufficient_stock_changes_nothing(client_user, produit_b):
    cart = get_active_cart(client_user.id)
    add_product(cart, produit_b.id, 1)

    produit = db.session.get(Product, produit_b.id)
    produit.stock = 0
    db.session.commit()

    result = validate_cart(cart, {'adresse_livraison': ADRESSE})
    assert not result['success']
    assert db.session.get(Cart, cart.id).statut == 'actif'
    assert _stock(produit_b.id) == 0


def test_last_unit_only_one_validation_succeeds(app, produit_b, monkeypatch):
    """Deux clients valident le dernier exemplaire : un seul réussit"""
    premier = make_client(nom='Premier', email='premier@test.com')
    second = make_client(nom='Second', email='second@test.com')

    panier_1 = get_active_cart(premier.id)
    panier_2 = get_active_cart(second.id)
    assert add_product(panier_1, produit_b.id, 1)['success']
    assert add_product(panier_2, produit_b.id, 1)['success']

    assert validate_cart(panier_1, {'adresse_livraison': ADRESSE})['success']

    # Le second passe la vérification préalable comme s'il l'avait faite avant le premier commit
    monkeypatch.setattr(cart_helpers, 'check_cart_validity',
                        lambda cart: {'est_valide': True, 'erreurs': [], 'avertissements': []})
    result = validate_cart(panier_2, {'adresse_livraison': ADRESSE})

    assert not result['success']
    assert _stock(produit_b.id) == 0
    assert db.session.get(Cart, panier_2.id).statut == 'actif'
    assert Cart.query.filter_by(statut='valide').count() == 1


def test_failed_reservation_rolls_back_previous_lines(client_user, produit_a, produit_b, monkeypatch):
    cart = get_active_cart(client_user.id)
    add_product(cart, produit_a.id, 2)
    add_product(cart, produit_b.id, 1)

    produit = db.session.get(Product, produit_b.id)
    produit.stock = 0
    db.session.commit()

    monkeypatch.setattr(cart_helpers, 'check_cart_validity',
                        lambda cart: {'est_valide': True, 'erreurs': [], 'avertissements': []})
    result = validate_cart(cart, {'adresse_livraison': ADRESSE})

    assert not result['success']
    assert _stock(produit_a.id) == 10
    assert db.session.get(Product, produit_a.id).nombre_ventes == 0
    assert db.session.get(Cart, cart.id).statut == 'actif'
    assert SalesStatistic.query.count() == 0


def test_cancel_restores_reserved_quantities(client_user, vendor_user, produit_a, produit_b):
    cart = get_active_cart(client_user.id)
    add_product(cart, produit_a.id, 4)
    add_product(cart, produit_b.id, 1)
    validate_cart(cart, {'adresse_livraison': ADRESSE})
    assert _stock(produit_a.id) == 6
    assert _stock(produit_b.id) == 0

    result = change_cart_status(cart, 'annule')
    assert result['success']
    assert cart.statut == 'annule'
    assert cart.date_annulation is not None
    assert _stock(produit_a.id) == 10
    assert _stock(produit_b.id) == 1
    assert db.session.get(Product, produit_a.id).nombre_ventes == 0

    stat = SalesStatistic.query.filter_by(vendeur_id=vendor_user.id).one()
    assert stat.ventes == 0
    assert stat.chiffre_affaires == Decimal('0.00')


def test_shipped_order_can_be_cancelled(client_user, produit_a):
    cart = get_active_cart(client_user.id)
    add_product(cart, produit_a.id, 2)
    validate_cart(cart, {'adresse_livraison': ADRESSE})

    assert change_cart_status(cart, 'expedie')['success']
    assert cart.date_expedition is not None
    assert change_cart_status(cart, 'annule')['success']
    assert _stock(produit_a.id) == 10


def test_invalid_transitions_have_no_side_effect(client_user, produit_a):
    cart = get_active_cart(client_user.id)
    add_product(cart, produit_a.id, 2)

    assert not change_cart_status(cart, 'expedie')['success']
    assert not change_cart_status(cart, 'livre')['success']
    assert not change_cart_status(cart, 'inconnu')['success']
    assert cart.statut == 'actif'

    validate_cart(cart, {'adresse_livraison': ADRESSE})
    assert change_cart_status(cart, 'expedie')['success']
    assert change_cart_status(cart, 'livre')['success']
    assert cart.date_livraison is not None

    for statut in ('actif', 'valide', 'expedie', 'annule'):
        assert not change_cart_status(cart, statut)['success']
    assert cart.statut == 'livre'
    assert _stock(produit_a.id) == 8


def test_validated_cart_is_immutable(client_user, produit_a, produit_b):
    cart = get_active_cart(client_user.id)
    add_product(cart, produit_a.id, 1)
    validate_cart(cart, {'adresse_livraison': ADRESSE})

    assert not add_product(cart, produit_b.id, 1)['success']
    assert not remove_line(cart, cart.lignes[0].id)['success']
    assert not clear_cart(cart)['success']

    nouveau = get_active_cart(client_user.id)
    assert nouveau.id != cart.id
    assert nouveau.statut == 'actif'


def test_client_can_only_cancel_validated_orders(client_user, produit_a):
    cart = get_active_cart(client_user.id)
    add_product(cart, produit_a.id, 1)
    validate_cart(cart, {'adresse_livraison': ADRESSE})
    change_cart_status(cart, 'expedie')

    result = cancel_client_order(client_user.id, cart.id)
    assert not result['success']
    assert cart.statut == 'expedie'

    assert cancel_client_order(client_user.id, 9999)['error'] == 'not_found'


def test_order_keeps_snapshot_when_product_deleted(client_user, vendor_user, produit_a, boutique, categorie):
    from db_helpers import delete_product
    from models import Vendor

    cart = get_active_cart(client_user.id)
    add_product(cart, produit_a.id, 1)
    validate_cart(cart, {'adresse_livraison': ADRESSE})
    change_cart_status(cart, 'expedie')
    change_cart_status(cart, 'livre')

    vendeur = db.session.get(Vendor, vendor_user.id)
    assert delete_product(vendeur, produit_a.id)['success']

    commande = db.session.get(Cart, cart.id)
    ligne = commande.to_dict()['lignes'][0]
    assert ligne['produit_id'] is None
    assert ligne['nom_produit'] == 'Produit A'
    assert ligne['prix_unitaire'] == 10.0


def test_delete_product_refused_in_open_order(client_user, vendor_user, produit_a):
    from db_helpers import delete_product
    from models import Vendor

    cart = get_active_cart(client_user.id)
    add_product(cart, produit_a.id, 1)
    validate_cart(cart, {'adresse_livraison': ADRESSE})

    vendeur = db.session.get(Vendor, vendor_user.id)
    result = delete_product(vendeur, produit_a.id)
    assert not result['success']
    assert db.session.get(Product, produit_a.id) is not None


def test_delete_product_removes_active_cart_lines(client_user, vendor_user, boutique, categorie):
    from db_helpers import delete_product
    from models import Vendor

    produit = make_product(boutique, categorie, nom='Éphémère', prix='5.00', stock=3)
    cart = get_active_cart(client_user.id)
    add_product(cart, produit.id, 2)

    vendeur = db.session.get(Vendor, vendor_user.id)
    assert delete_product(vendeur, produit.id)['success']
    cart = db.session.get(Cart, cart.id)
    assert cart.lignes == []
    assert float(cart.total) == 0.0


def test_deleting_client_cancels_open_orders(vendor_user, produit_a, produit_b):
    from db_helpers import delete_user_account

    client = make_client(nom='Partant', email='partant@test.com')
    client_id = client.id

    commande = get_active_cart(client.id)
    add_product(commande, produit_a.id, 3)
    validate_cart(commande, {'adresse_livraison': ADRESSE})

    expediee = get_active_cart(client.id)
    add_product(expediee, produit_b.id, 1)
    validate_cart(expediee, {'adresse_livraison': ADRESSE})
    change_cart_status(expediee, 'expedie')

    assert _stock(produit_a.id) == 7
    assert _stock(produit_b.id) == 0
    assert SalesStatistic.query.filter_by(vendeur_id=vendor_user.id).one().ventes == 2

    assert delete_user_account(client, 'secret123')['success']

    assert Cart.query.filter_by(client_id=client_id).count() == 0
    assert _stock(produit_a.id) == 10
    assert _stock(produit_b.id) == 1
    stat = SalesStatistic.query.filter_by(vendeur_id=vendor_user.id).one()
    assert stat.ventes == 0
    assert stat.chiffre_affaires == Decimal('0.00')


def test_inactive_product_is_reported_unavailable(client_user, produit_a, produit_b):
    cart = get_active_cart(client_user.id)
    ligne = add_product(cart, produit_b.id, 1)['ligne']

    produit_a.statut = 'suspendu'
    db.session.commit()
    result = add_product(cart, produit_a.id, 1)
    assert result['success'] is False
    assert result['message'].startswith('Produit indisponible')
    assert 'Stock insuffisant' not in result['message']

    produit_b.statut = 'inactif'
    db.session.commit()
    result = update_line_quantity(cart, ligne['id'], 1)
    assert result['message'].startswith('Produit indisponible')
