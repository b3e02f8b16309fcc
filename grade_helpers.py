#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Grades vendeur (conditions, progression, promotion) et statistiques de ventes
"""

from datetime import datetime, date, timedelta
from decimal import Decimal
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from models import db, Vendor, SellerGrade, Boutique, Product, Cart, CartLine, SalesStatistic, User, to_decimal

# Statuts de panier comptés comme ventes
SOLD_STATUSES = ('valide', 'expedie', 'livre')

DEFAULT_GRADES = [
    {
        'niveau': 1,
        'nom': 'Bronze',
        'description': 'Grade de départ pour tous les nouveaux vendeurs',
        'ventes_minimum': 0,
        'ca_minimum': Decimal('0.00'),
        'duree_minimum_jours': 0,
        'max_boutiques': 1,
        'max_produits_par_boutique': 10,
        'commission_reduite': Decimal('0.00'),
        'avantages': ['Accès aux fonctionnalités de base']
    },
    {
        'niveau': 2,
        'nom': 'Argent',
        'description': "Grade intermédiaire avec plus d'avantages",
        'ventes_minimum': 10,
        'ca_minimum': Decimal('500.00'),
        'duree_minimum_jours': 30,
        'max_boutiques': 3,
        'max_produits_par_boutique': 50,
        'commission_reduite': Decimal('5.00'),
        'avantages': ['Statistiques détaillées mensuelles', 'Support prioritaire']
    },
    {
        'niveau': 3,
        'nom': 'Or',
        'description': 'Grade avancé pour vendeurs expérimentés',
        'ventes_minimum': 50,
        'ca_minimum': Decimal('2500.00'),
        'duree_minimum_jours': 90,
        'max_boutiques': 5,
        'max_produits_par_boutique': 200,
        'commission_reduite': Decimal('10.00'),
        'avantages': ['Outils de marketing avancés', "Promotion sur la page d'accueil", 'Badge "Vendeur Or"']
    },
    {
        'niveau': 4,
        'nom': 'Platine',
        'description': 'Grade premium avec tous les avantages',
        'ventes_minimum': 200,
        'ca_minimum': Decimal('10000.00'),
        'duree_minimum_jours': 180,
        'max_boutiques': 10,
        'max_produits_par_boutique': 1000,
        'commission_reduite': Decimal('15.00'),
        'avantages': ['Manager dédié', 'Accès aux ventes privées',
                      'Programme de fidélité pour clients', 'Badge "Vendeur Platine"']
    }
]


def seed_default_grades():
    """Crée ou met à jour les quatre grades par défaut (sans les templates)"""
    created = 0
    for grade_data in DEFAULT_GRADES:
        grade = SellerGrade.query.filter_by(niveau=grade_data['niveau']).first()
        if grade is None:
            grade = SellerGrade(niveau=grade_data['niveau'])
            db.session.add(grade)
            created += 1
        for field in ('nom', 'description', 'ventes_minimum', 'ca_minimum', 'duree_minimum_jours',
                      'max_boutiques', 'max_produits_par_boutique', 'commission_reduite'):
            setattr(grade, field, grade_data[field])
        grade.set_avantages(grade_data['avantages'])
        if grade.templates_disponibles is None:
            grade.set_templates_disponibles([])

    db.session.commit()
    print(f"[GRADE] ✅ Grades par défaut initialisés ({created} créé(s))")
    return {'success': True, 'message': 'Grades par défaut initialisés', 'crees': created}


def get_lowest_grade():
    return SellerGrade.query.order_by(SellerGrade.niveau.asc()).first()


def get_all_grades():
    return [grade.to_dict() for grade in SellerGrade.query.order_by(SellerGrade.niveau.asc()).all()]


def get_next_grade(vendeur):
    niveau_actuel = vendeur.grade.niveau if vendeur.grade else 0
    return SellerGrade.query.filter(SellerGrade.niveau > niveau_actuel).order_by(SellerGrade.niveau.asc()).first()


# =============================================
# CONDITIONS ET PROGRESSION
# =============================================

def get_vendor_sales_figures(vendeur):
    """
    Agrégat en direct sur les commandes valide/expedie/livre :
    nombre de commandes contenant des produits du vendeur et chiffre d'affaires
    """
    nombre, montant = db.session.execute(
        select(func.count(func.distinct(CartLine.panier_id)), func.sum(CartLine.sous_total))
        .join(Cart, Cart.id == CartLine.panier_id)
        .where(CartLine.vendeur_id == vendeur.id, Cart.statut.in_(SOLD_STATUSES))
    ).one()
    return {
        'total_ventes': nombre or 0,
        'chiffre_affaires': to_decimal(montant or 0)
    }


def _days_active(vendeur):
    utilisateur = db.session.get(User, vendeur.id)
    if utilisateur is None or utilisateur.created_at is None:
        return 0
    return (datetime.utcnow() - utilisateur.created_at).days


def _bonus_conditions(grade, vendeur):
    """Condition supplémentaire propre à chaque palier"""
    conditions = []
    erreurs = []

    if grade.niveau == 1:
        conditions.append('✓ Grade de base')

    elif grade.niveau == 2:
        nb_boutiques = Boutique.query.filter_by(vendeur_id=vendeur.id).count()
        if nb_boutiques == 0:
            erreurs.append('Au moins une boutique requise')
        else:
            conditions.append('✓ Boutique active')

    elif grade.niveau == 3:
        nb_categories = db.session.execute(
            select(func.count(func.distinct(Product.categorie_id)))
            .join(Boutique, Boutique.id == Product.boutique_id)
            .where(Boutique.vendeur_id == vendeur.id)
        ).scalar() or 0
        if nb_categories < 3:
            erreurs.append(f'Diversité insuffisante: {nb_categories}/3 catégories')
        else:
            conditions.append(f'✓ Diversité: {nb_categories}/3 catégories')

    elif grade.niveau == 4:
        debut = date.today() - timedelta(days=28)
        jours = db.session.execute(
            select(SalesStatistic.date)
            .where(SalesStatistic.vendeur_id == vendeur.id,
                   SalesStatistic.date >= debut,
                   SalesStatistic.ventes > 0)
        ).scalars().all()
        semaines = {(jour - debut).days // 7 for jour in jours}
        if len(semaines) < 3:
            erreurs.append(f'Régularité insuffisante: {len(semaines)}/3 semaines avec ventes')
        else:
            conditions.append(f'✓ Régularité: {len(semaines)}/4 semaines actives')

    return conditions, erreurs


def check_grade_conditions(grade, vendeur):
    conditions = []
    erreurs = []

    chiffres = get_vendor_sales_figures(vendeur)

    if chiffres['total_ventes'] < grade.ventes_minimum:
        erreurs.append(f"Ventes insuffisantes: {chiffres['total_ventes']}/{grade.ventes_minimum}")
    else:
        conditions.append(f"✓ Ventes: {chiffres['total_ventes']}/{grade.ventes_minimum}")

    ca_vendeur = chiffres['chiffre_affaires']
    ca_requis = to_decimal(grade.ca_minimum)
    if ca_vendeur < ca_requis:
        erreurs.append(f'CA insuffisant: {ca_vendeur:.2f}€/{ca_requis:.2f}€')
    else:
        conditions.append(f'✓ CA: {ca_vendeur:.2f}€/{ca_requis:.2f}€')

    if grade.duree_minimum_jours > 0:
        jours = _days_active(vendeur)
        if jours < grade.duree_minimum_jours:
            erreurs.append(f'Durée insuffisante: {jours}/{grade.duree_minimum_jours} jours')
        else:
            conditions.append(f'✓ Activité: {jours}/{grade.duree_minimum_jours} jours')

    bonus_ok, bonus_ko = _bonus_conditions(grade, vendeur)
    conditions.extend(bonus_ok)
    erreurs.extend(bonus_ko)

    remplies = len(erreurs) == 0
    total = len(conditions) + len(erreurs)
    return {
        'success': remplies,
        'message': 'Toutes les conditions sont remplies' if remplies else 'Conditions non remplies',
        'conditions_remplies': conditions,
        'conditions_manquantes': erreurs,
        'pourcentage_completion': round(len(conditions) / total * 100) if total else 100
    }


def _percent(actuel, requis):
    if not requis:
        return 100
    return min(round(float(actuel) / float(requis) * 100), 100)


def compute_progression(grade, vendeur):
    verification = check_grade_conditions(grade, vendeur)
    chiffres = get_vendor_sales_figures(vendeur)

    details = {
        'ventes': {
            'actuel': chiffres['total_ventes'],
            'requis': grade.ventes_minimum,
            'pourcentage': _percent(chiffres['total_ventes'], grade.ventes_minimum)
        },
        'chiffre_affaires': {
            'actuel': float(chiffres['chiffre_affaires']),
            'requis': float(grade.ca_minimum),
            'pourcentage': _percent(chiffres['chiffre_affaires'], grade.ca_minimum)
        }
    }
    if grade.duree_minimum_jours > 0:
        jours = _days_active(vendeur)
        details['duree'] = {
            'actuel': jours,
            'requis': grade.duree_minimum_jours,
            'pourcentage': _percent(jours, grade.duree_minimum_jours)
        }

    return {
        'grade_cible': grade.nom,
        'pourcentage_global': verification['pourcentage_completion'],
        'details': details,
        'conditions_manquantes': verification['conditions_manquantes'],
        'peut_promouvoir': verification['success']
    }


def get_grade_overview(vendeur):
    """Grade actuel, prochain grade et progression"""
    prochain = get_next_grade(vendeur)
    chiffres = get_vendor_sales_figures(vendeur)
    return {
        'success': True,
        'message': 'Grade récupéré avec succès',
        'grade_actuel': vendeur.grade.to_dict() if vendeur.grade else None,
        'statistiques': {
            'total_ventes': chiffres['total_ventes'],
            'chiffre_affaires': float(chiffres['chiffre_affaires'])
        },
        'prochain_grade': {
            'id': prochain.id,
            'nom': prochain.nom,
            'niveau': prochain.niveau,
            'description': prochain.description,
            'progression': compute_progression(prochain, vendeur)
        } if prochain else None
    }


def request_promotion(vendeur):
    """
    Promotion vers le palier immédiatement supérieur si toutes ses conditions sont remplies
    La mise à jour est conditionnée au grade courant : un second appel concurrent ne saute pas de palier
    """
    grade_actuel = vendeur.grade
    prochain = get_next_grade(vendeur)
    if prochain is None:
        return {'success': False, 'error': 'validation', 'message': 'Grade maximum atteint'}

    verification = check_grade_conditions(prochain, vendeur)
    if not verification['success']:
        return {
            'success': False,
            'error': 'validation',
            'message': f'Conditions non remplies pour le grade {prochain.nom}',
            'errors': [{'field': 'grade', 'message': erreur} for erreur in verification['conditions_manquantes']]
        }

    result = db.session.execute(
        update(Vendor)
        .where(Vendor.id == vendeur.id, Vendor.grade_id == grade_actuel.id)
        .values(grade_id=prochain.id)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    db.session.refresh(vendeur)

    if result.rowcount != 1:
        print(f"[GRADE] ⚠️ Vendeur {vendeur.id}: grade déjà modifié, promotion ignorée")
        return {
            'success': True,
            'message': 'Grade déjà mis à jour',
            'grade': vendeur.grade.to_dict() if vendeur.grade else None
        }

    print(f"[GRADE] ✅ Vendeur {vendeur.id} promu {grade_actuel.nom} -> {prochain.nom}")
    return {
        'success': True,
        'message': f'Félicitations ! Vous êtes maintenant vendeur {prochain.nom}',
        'ancien_grade': grade_actuel.nom,
        'grade': prochain.to_dict()
    }


# =============================================
# STATISTIQUES DE VENTES
# =============================================

def _increment_statistic(vendeur_id, jour, montant):
    result = db.session.execute(
        update(SalesStatistic)
        .where(SalesStatistic.vendeur_id == vendeur_id, SalesStatistic.date == jour)
        .values(ventes=SalesStatistic.ventes + 1,
                chiffre_affaires=SalesStatistic.chiffre_affaires + montant)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def record_sale(vendeur_id, montant, jour=None):
    """
    Ajoute une vente à l'agrégat journalier du vendeur (upsert, sans commit)
    L'insertion se fait dans un savepoint : si une validation concurrente a créé
    la ligne du jour entre-temps, la contrainte unique lève IntegrityError et la
    vente est ajoutée à cette ligne.
    """
    jour = jour or date.today()
    montant = to_decimal(montant)

    if _increment_statistic(vendeur_id, jour, montant) == 0:
        try:
            with db.session.begin_nested():
                db.session.add(SalesStatistic(vendeur_id=vendeur_id, date=jour, ventes=1,
                                              chiffre_affaires=montant))
        except IntegrityError:
            print(f"[STATS] ⚠️ Ligne du {jour} créée en parallèle pour le vendeur {vendeur_id}, mise à jour")
            _increment_statistic(vendeur_id, jour, montant)

    print(f"[STATS] Vente enregistrée - Vendeur {vendeur_id} le {jour}: +{montant}")


def revert_sale(vendeur_id, montant, jour):
    """Retire une vente de l'agrégat journalier (annulation de commande, sans commit)"""
    montant = to_decimal(montant)
    db.session.execute(
        update(SalesStatistic)
        .where(SalesStatistic.vendeur_id == vendeur_id, SalesStatistic.date == jour, SalesStatistic.ventes > 0)
        .values(ventes=SalesStatistic.ventes - 1,
                chiffre_affaires=SalesStatistic.chiffre_affaires - montant)
        .execution_options(synchronize_session=False)
    )
    print(f"[STATS] Vente retirée - Vendeur {vendeur_id} le {jour}: -{montant}")


def evaluate_performance(stat):
    ventes = stat.ventes or 0
    ca = float(stat.chiffre_affaires or 0)

    if ventes >= 10 and ca >= 500:
        niveau, couleur, message = 'excellent', 'green', 'Excellente performance !'
    elif ventes >= 5 and ca >= 200:
        niveau, couleur, message = 'bon', 'blue', 'Bonne performance'
    elif ventes >= 1 and ca >= 50:
        niveau, couleur, message = 'moyen', 'orange', 'Performance correcte'
    else:
        niveau, couleur, message = 'faible', 'red', 'Performance à améliorer'

    return {
        'niveau': niveau,
        'couleur': couleur,
        'message': message,
        'score': min(round((ventes * 10 + ca / 10) / 2), 100)
    }


def period_start(periode, today=None):
    today = today or date.today()
    if periode == 'semaine':
        return today - timedelta(days=7)
    if periode == 'mois':
        return today.replace(day=1)
    if periode == 'trimestre':
        mois = today.month - 3
        annee = today.year
        if mois <= 0:
            mois += 12
            annee -= 1
        return date(annee, mois, 1)
    if periode == 'annee':
        return date(today.year, 1, 1)
    return today - timedelta(days=30)


def get_vendor_statistics(vendeur_id, periode=None, date_debut=None, date_fin=None, limite=365):
    query = SalesStatistic.query.filter(SalesStatistic.vendeur_id == vendeur_id)

    if date_debut and date_fin:
        query = query.filter(SalesStatistic.date.between(date_debut, date_fin))
    else:
        query = query.filter(SalesStatistic.date >= period_start(periode))

    statistiques = query.order_by(SalesStatistic.date.desc()).limit(limite).all()

    total_ventes = sum(stat.ventes for stat in statistiques)
    total_ca = sum((to_decimal(stat.chiffre_affaires) for stat in statistiques), Decimal('0.00'))
    nb_jours = len(statistiques)

    return {
        'success': True,
        'message': 'Statistiques récupérées avec succès',
        'periode': periode or ('personnalisee' if date_debut and date_fin else 'mois_glissant'),
        'statistiques': [
            dict(stat.to_dict(), evaluation=evaluate_performance(stat)) for stat in statistiques
        ],
        'resume': {
            'nombre_jours': nb_jours,
            'total_ventes': total_ventes,
            'total_ca': float(total_ca),
            'moyenne_ventes_jour': round(total_ventes / nb_jours, 2) if nb_jours else 0,
            'moyenne_ca_jour': round(float(total_ca) / nb_jours, 2) if nb_jours else 0,
            'ca_moyen_par_vente': round(float(total_ca) / total_ventes, 2) if total_ventes else 0
        }
    }


def get_vendor_monthly_statistics(vendeur_id, mois=12):
    """Ventes et chiffre d'affaires regroupés par mois sur les N derniers mois"""
    aujourd_hui = date.today()
    annee, numero = aujourd_hui.year, aujourd_hui.month - (mois - 1)
    while numero <= 0:
        numero += 12
        annee -= 1
    debut = date(annee, numero, 1)

    statistiques = SalesStatistic.query.filter(
        SalesStatistic.vendeur_id == vendeur_id,
        SalesStatistic.date >= debut
    ).order_by(SalesStatistic.date.asc()).all()

    par_mois = {}
    for stat in statistiques:
        cle = stat.date.strftime('%Y-%m')
        ventes, ca, jours = par_mois.get(cle, (0, Decimal('0.00'), 0))
        par_mois[cle] = (ventes + stat.ventes, ca + to_decimal(stat.chiffre_affaires), jours + 1)

    return {
        'success': True,
        'message': 'Statistiques mensuelles récupérées avec succès',
        'periode': {'debut': debut.isoformat(), 'fin': aujourd_hui.isoformat()},
        'mois': [
            {
                'mois': cle,
                'ventes': ventes,
                'chiffre_affaires': float(ca),
                'jours_actifs': jours,
                'ca_moyen_par_vente': round(float(ca) / ventes, 2) if ventes else 0
            }
            for cle, (ventes, ca, jours) in sorted(par_mois.items())
        ]
    }


def get_vendor_ranking(limite=20, tri='chiffre_affaires', date_debut=None, date_fin=None):
    if not (date_debut and date_fin):
        date_fin = date.today()
        date_debut = date_fin - timedelta(days=30)

    total_ventes = func.sum(SalesStatistic.ventes)
    total_ca = func.sum(SalesStatistic.chiffre_affaires)
    ordre = total_ventes.desc() if tri == 'ventes' else total_ca.desc()

    rows = db.session.execute(
        select(SalesStatistic.vendeur_id, total_ventes, total_ca, func.count(SalesStatistic.date))
        .where(SalesStatistic.date.between(date_debut, date_fin))
        .group_by(SalesStatistic.vendeur_id)
        .order_by(ordre)
        .limit(limite)
    ).all()

    classement = []
    for rang, (vendeur_id, ventes, ca, jours_actifs) in enumerate(rows, start=1):
        vendeur = db.session.get(Vendor, vendeur_id)
        utilisateur = vendeur.utilisateur if vendeur else None
        classement.append({
            'rang': rang,
            'vendeur': {
                'id': vendeur_id,
                'nom': utilisateur.nom if utilisateur else 'Nom non disponible',
                'grade': vendeur.grade.nom if vendeur and vendeur.grade else 'Bronze'
            },
            'performance': {
                'total_ventes': int(ventes or 0),
                'total_ca': round(float(ca or 0), 2),
                'jours_actifs': jours_actifs
            }
        })

    return {
        'success': True,
        'message': 'Classement récupéré avec succès',
        'critere_tri': 'ventes' if tri == 'ventes' else 'chiffre_affaires',
        'periode': {'debut': date_debut.isoformat(), 'fin': date_fin.isoformat()},
        'classement': classement
    }


def get_global_report(date_debut=None, date_fin=None):
    date_fin = date_fin or date.today()
    date_debut = date_debut or (date_fin - timedelta(days=30))
    periode = SalesStatistic.date.between(date_debut, date_fin)

    ventes, ca, enregistrements, vendeurs_actifs = db.session.execute(
        select(func.sum(SalesStatistic.ventes), func.sum(SalesStatistic.chiffre_affaires),
               func.count(SalesStatistic.id), func.count(func.distinct(SalesStatistic.vendeur_id)))
        .where(periode)
    ).one()

    evolution = db.session.execute(
        select(SalesStatistic.date, func.sum(SalesStatistic.ventes), func.sum(SalesStatistic.chiffre_affaires),
               func.count(func.distinct(SalesStatistic.vendeur_id)))
        .where(periode)
        .group_by(SalesStatistic.date)
        .order_by(SalesStatistic.date.asc())
    ).all()

    ventes = int(ventes or 0)
    ca = float(ca or 0)
    return {
        'success': True,
        'message': 'Rapport global généré avec succès',
        'rapport': {
            'periode': {'debut': date_debut.isoformat(), 'fin': date_fin.isoformat()},
            'global': {
                'total_ventes': ventes,
                'total_ca': round(ca, 2),
                'vendeurs_actifs': vendeurs_actifs or 0,
                'jours_enregistres': enregistrements or 0
            },
            'moyennes': {
                'ventes_par_jour': round(ventes / enregistrements, 2) if enregistrements else 0,
                'ca_par_jour': round(ca / enregistrements, 2) if enregistrements else 0,
                'ca_par_vente': round(ca / ventes, 2) if ventes else 0
            },
            'evolution_journaliere': [
                {
                    'date': str(jour),
                    'ventes': int(nb or 0),
                    'chiffre_affaires': round(float(montant or 0), 2),
                    'vendeurs_actifs': actifs
                }
                for jour, nb, montant, actifs in evolution
            ]
        }
    }


def regenerate_statistics(date_debut=None, date_fin=None):
    """
    Reconstruit les agrégats journaliers à partir des commandes vendues
    Les statistiques de la période sont remplacées, pas cumulées
    """
    date_fin = date_fin or date.today()
    date_debut = date_debut or (date_fin - timedelta(days=365))
    debut_dt = datetime.combine(date_debut, datetime.min.time())
    fin_dt = datetime.combine(date_fin, datetime.max.time())

    try:
        SalesStatistic.query.filter(
            SalesStatistic.date.between(date_debut, date_fin)
        ).delete(synchronize_session='fetch')

        commandes = Cart.query.filter(
            Cart.statut.in_(SOLD_STATUSES),
            Cart.date_validation.between(debut_dt, fin_dt)
        ).all()

        agregats = {}
        for commande in commandes:
            jour = commande.date_validation.date()
            par_vendeur = {}
            for ligne in commande.lignes:
                if ligne.vendeur_id is None:
                    continue
                par_vendeur[ligne.vendeur_id] = par_vendeur.get(ligne.vendeur_id, Decimal('0.00')) + to_decimal(ligne.sous_total)
            for vendeur_id, montant in par_vendeur.items():
                cle = (vendeur_id, jour)
                ventes, ca = agregats.get(cle, (0, Decimal('0.00')))
                agregats[cle] = (ventes + 1, ca + montant)

        for (vendeur_id, jour), (ventes, ca) in agregats.items():
            db.session.add(SalesStatistic(vendeur_id=vendeur_id, date=jour, ventes=ventes, chiffre_affaires=ca))

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    print(f"[STATS] ✅ Statistiques régénérées: {len(commandes)} commande(s), {len(agregats)} agrégat(s)")
    return {
        'success': True,
        'message': 'Statistiques régénérées avec succès',
        'details': {
            'commandes_traitees': len(commandes),
            'statistiques_creees': len(agregats),
            'periode': {'debut': date_debut.isoformat(), 'fin': date_fin.isoformat()}
        }
    }
