#!/usr/bin/env python3
"""
Tests des grades vendeur : conditions, promotion, templates et statistiques de ventes
"""

from datetime import date, datetime, timedelta
from decimal import Decimal

import grade_helpers
from models import db, User, Vendor, SellerGrade, Template, SalesStatistic
from grade_helpers import (check_grade_conditions, request_promotion, get_next_grade, get_grade_overview,
                           get_vendor_statistics, regenerate_statistics, get_vendor_ranking, period_start,
                           evaluate_performance, seed_default_grades, record_sale)
from db_helpers import create_boutique, change_boutique_template, get_available_templates, seed_default_templates
from cart_helpers import get_active_cart, add_product, validate_cart
from conftest import make_product

ADRESSE = '12 rue des Lilas, 75000 Paris'


def _vendeur(user):
    return db.session.get(Vendor, user.id)


def _sell(client_user, produit, fois):
    for _ in range(fois):
        cart = get_active_cart(client_user.id)
        add_product(cart, produit.id, 1)
        assert validate_cart(cart, {'adresse_livraison': ADRESSE})['success']


def test_default_grades_and_templates_are_seeded(app):
    grades = SellerGrade.query.order_by(SellerGrade.niveau).all()
    assert [grade.nom for grade in grades] == ['Bronze', 'Argent', 'Or', 'Platine']
    assert [grade.max_boutiques for grade in grades] == [1, 3, 5, 10]

    bronze, platine = grades[0], grades[-1]
    assert len(bronze.get_templates_disponibles()) == 1
    assert len(platine.get_templates_disponibles()) == Template.query.count() == 4

    # Réexécution sans doublon
    seed_default_grades()
    seed_default_templates()
    assert SellerGrade.query.count() == 4
    assert Template.query.count() == 4


def test_new_vendor_cannot_be_promoted(vendor_user):
    vendeur = _vendeur(vendor_user)
    assert vendeur.grade.nom == 'Bronze'

    result = request_promotion(vendeur)
    assert not result['success']
    assert result['error'] == 'validation'
    messages = ' '.join(erreur['message'] for erreur in result['errors'])
    assert 'Ventes insuffisantes' in messages
    assert 'boutique' in messages
    assert _vendeur(vendor_user).grade.nom == 'Bronze'


def test_promotion_to_next_tier_only(client_user, vendor_user, boutique, categorie):
    produit = make_product(boutique, categorie, nom='Lampe', prix='60.00', stock=50)
    _sell(client_user, produit, 10)

    utilisateur = db.session.get(User, vendor_user.id)
    utilisateur.created_at = datetime.utcnow() - timedelta(days=45)
    db.session.commit()

    vendeur = _vendeur(vendor_user)
    argent = get_next_grade(vendeur)
    verification = check_grade_conditions(argent, vendeur)
    assert verification['success'], verification['conditions_manquantes']
    assert verification['pourcentage_completion'] == 100

    result = request_promotion(vendeur)
    assert result['success']
    assert result['grade']['nom'] == 'Argent'
    assert _vendeur(vendor_user).grade.nom == 'Argent'

    # Or : 50 ventes, 2500 € et 90 jours, non atteints
    result = request_promotion(_vendeur(vendor_user))
    assert not result['success']
    assert _vendeur(vendor_user).grade.nom == 'Argent'


def test_grade_overview_progression(client_user, vendor_user, boutique, categorie):
    produit = make_product(boutique, categorie, nom='Tapis', prix='50.00', stock=10)
    _sell(client_user, produit, 2)

    apercu = get_grade_overview(_vendeur(vendor_user))
    assert apercu['grade_actuel']['nom'] == 'Bronze'
    assert apercu['statistiques'] == {'total_ventes': 2, 'chiffre_affaires': 100.0}

    progression = apercu['prochain_grade']['progression']
    assert progression['grade_cible'] == 'Argent'
    assert progression['details']['ventes']['pourcentage'] == 20
    assert progression['details']['chiffre_affaires']['pourcentage'] == 20
    assert not progression['peut_promouvoir']


def test_boutique_limit_and_template_gating(vendor_user):
    vendeur = _vendeur(vendor_user)
    basique = Template.query.filter_by(nom='Basique').one()
    premium = Template.query.filter_by(nom='Premium').one()

    result = create_boutique(vendeur, {'nom': 'Ma boutique', 'template_id': premium.id})
    assert result['error'] == 'forbidden'

    result = create_boutique(vendeur, {'nom': 'Ma boutique', 'couleur_theme': 'rouge'})
    assert result['error'] == 'validation'

    result = create_boutique(vendeur, {'nom': 'Ma boutique', 'url_personnalisee': 'ma-boutique'})
    assert result['success']
    assert result['boutique']['template_id'] == basique.id
    boutique_id = result['boutique']['id']

    # Bronze : une seule boutique
    assert create_boutique(vendeur, {'nom': 'Deuxième'})['error'] == 'forbidden'

    assert change_boutique_template(vendeur, boutique_id, premium.id)['error'] == 'forbidden'

    disponibles = get_available_templates(vendeur)
    assert [template['nom'] for template in disponibles['disponibles']] == ['Basique']
    assert len(disponibles['verrouilles']) == 3

    vendeur.grade = SellerGrade.query.filter_by(niveau=3).one()
    db.session.commit()
    assert change_boutique_template(vendeur, boutique_id, premium.id)['success']


def test_duplicate_custom_url_is_a_conflict(vendor_user):
    from conftest import make_vendor

    assert create_boutique(_vendeur(vendor_user), {'nom': 'Première', 'url_personnalisee': 'boutique-unique'})['success']
    autre = _vendeur(make_vendor(nom='Autre', email='autre@test.com'))
    result = create_boutique(autre, {'nom': 'Copie', 'url_personnalisee': 'boutique-unique'})
    assert result['error'] == 'conflict'


def test_statistics_regeneration_replaces_aggregates(client_user, vendor_user, boutique, categorie):
    produit = make_product(boutique, categorie, nom='Vase', prix='20.00', stock=10)
    _sell(client_user, produit, 3)

    stat = SalesStatistic.query.filter_by(vendeur_id=vendor_user.id).one()
    assert stat.ventes == 3
    assert stat.chiffre_affaires == Decimal('60.00')

    # Agrégat faussé puis reconstruit à partir des commandes
    stat.ventes = 42
    db.session.commit()

    result = regenerate_statistics(date.today() - timedelta(days=1), date.today())
    assert result['success']
    assert result['details']['commandes_traitees'] == 3

    stat = SalesStatistic.query.filter_by(vendeur_id=vendor_user.id).one()
    assert stat.ventes == 3
    assert stat.chiffre_affaires == Decimal('60.00')

    regenerate_statistics(date.today() - timedelta(days=1), date.today())
    assert SalesStatistic.query.filter_by(vendeur_id=vendor_user.id).one().ventes == 3


def test_vendor_statistics_and_ranking(client_user, vendor_user, boutique, categorie):
    produit = make_product(boutique, categorie, nom='Bol', prix='15.00', stock=10)
    _sell(client_user, produit, 2)

    statistiques = get_vendor_statistics(vendor_user.id, periode='semaine')
    assert statistiques['resume']['total_ventes'] == 2
    assert statistiques['resume']['total_ca'] == 30.0
    assert statistiques['statistiques'][0]['evaluation']['niveau'] == 'faible'

    classement = get_vendor_ranking()['classement']
    assert classement[0]['rang'] == 1
    assert classement[0]['vendeur']['id'] == vendor_user.id
    assert classement[0]['performance']['total_ca'] == 30.0


def test_period_start_and_performance_levels():
    reference = date(2024, 2, 15)
    assert period_start('semaine', reference) == date(2024, 2, 8)
    assert period_start('mois', reference) == date(2024, 2, 1)
    assert period_start('trimestre', reference) == date(2023, 11, 1)
    assert period_start('annee', reference) == date(2024, 1, 1)

    assert evaluate_performance(SalesStatistic(ventes=12, chiffre_affaires=Decimal('800')))['niveau'] == 'excellent'
    assert evaluate_performance(SalesStatistic(ventes=5, chiffre_affaires=Decimal('200')))['niveau'] == 'bon'
    assert evaluate_performance(SalesStatistic(ventes=1, chiffre_affaires=Decimal('50')))['niveau'] == 'moyen'
    assert evaluate_performance(SalesStatistic(ventes=0, chiffre_affaires=Decimal('0')))['niveau'] == 'faible'


def test_record_sale_adds_to_row_created_concurrently(vendor_user, monkeypatch):
    jour = date.today()
    db.session.add(SalesStatistic(vendeur_id=vendor_user.id, date=jour, ventes=2,
                                  chiffre_affaires=Decimal('40.00')))
    db.session.commit()

    # Le premier UPDATE ne voit pas encore la ligne de l'autre transaction
    increment = grade_helpers._increment_statistic
    appels = []

    def increment_stale_first(*args):
        appels.append(args)
        if len(appels) == 1:
            return 0
        return increment(*args)

    monkeypatch.setattr(grade_helpers, '_increment_statistic', increment_stale_first)
    record_sale(vendor_user.id, Decimal('15.00'), jour)
    db.session.commit()

    assert len(appels) == 2
    stat = SalesStatistic.query.filter_by(vendeur_id=vendor_user.id, date=jour).one()
    assert stat.ventes == 3
    assert stat.chiffre_affaires == Decimal('55.00')


def test_record_sale_creates_then_increments_daily_row(vendor_user):
    jour = date.today()
    record_sale(vendor_user.id, Decimal('10.00'), jour)
    record_sale(vendor_user.id, Decimal('5.50'), jour)
    db.session.commit()

    stat = SalesStatistic.query.filter_by(vendeur_id=vendor_user.id, date=jour).one()
    assert stat.ventes == 2
    assert stat.chiffre_affaires == Decimal('15.50')
