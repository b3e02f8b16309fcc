"""
Fixtures pytest : base SQLite en mémoire recréée pour chaque test,
grades et templates par défaut, comptes client / vendeur / admin
"""
import os

os.environ['TESTING'] = '1'
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['MAIL_ENABLED'] = '0'
os.environ.setdefault('JWT_SECRET', 'test-jwt-secret')

from decimal import Decimal

import pytest

from marketplace_app import app as flask_app
from models import db, User, Client, Vendor, Boutique, Category, Product
from grade_helpers import seed_default_grades, get_lowest_grade
from db_helpers import seed_default_templates
from auth_helpers import generate_access_token


@pytest.fixture
def app():
    with flask_app.app_context():
        db.create_all()
        seed_default_grades()
        seed_default_templates()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def http(app):
    return app.test_client()


def make_client(nom='Client Test', email='client@test.com', password='secret123'):
    user = User(nom=nom, email=email, role='client', statut='actif')
    user.set_password(password)
    db.session.add(user)
    db.session.flush()
    db.session.add(Client(id=user.id, adresse='12 rue des Lilas, Paris'))
    db.session.commit()
    return user


def make_vendor(nom='Vendeur Test', email='vendeur@test.com', password='secret123'):
    user = User(nom=nom, email=email, role='vendeur', statut='actif')
    user.set_password(password)
    db.session.add(user)
    db.session.flush()
    db.session.add(Vendor(id=user.id, grade_id=get_lowest_grade().id))
    db.session.commit()
    return user


def make_admin(email='admin@test.com'):
    user = User(nom='Admin', email=email, role='admin', statut='actif')
    user.set_password('admin123')
    db.session.add(user)
    db.session.commit()
    return user


def make_product(boutique, categorie, nom='Produit', prix='10.00', stock=10):
    produit = Product(boutique_id=boutique.id, categorie_id=categorie.id, nom=nom,
                      prix=Decimal(prix), stock=stock, statut='actif')
    db.session.add(produit)
    db.session.commit()
    return produit


def auth_headers(user):
    return {'Authorization': f'Bearer {generate_access_token(user)}'}


@pytest.fixture
def client_user(app):
    return make_client()


@pytest.fixture
def vendor_user(app):
    return make_vendor()


@pytest.fixture
def admin_user(app):
    return make_admin()


@pytest.fixture
def categorie(app):
    categorie = Category(nom='Électronique', statut='active')
    db.session.add(categorie)
    db.session.commit()
    return categorie


@pytest.fixture
def boutique(vendor_user):
    boutique = Boutique(vendeur_id=vendor_user.id, template_id=1, nom='Boutique Test', statut='active')
    db.session.add(boutique)
    db.session.commit()
    return boutique


@pytest.fixture
def produit_a(boutique, categorie):
    return make_product(boutique, categorie, nom='Produit A', prix='10.00', stock=10)


@pytest.fixture
def produit_b(boutique, categorie):
    return make_product(boutique, categorie, nom='Produit B', prix='25.50', stock=1)
