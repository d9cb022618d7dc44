import pytest
from django.contrib.auth.models import AnonymousUser

from users.models import UserRole, is_admin

pytestmark = pytest.mark.django_db


def test_host_payability(host_user):
    assert host_user.has_payout_account
    assert host_user.is_payable

    host_user.stripe_onboarding_complete = False
    assert host_user.has_payout_account
    assert not host_user.is_payable

    host_user.stripe_account_id = "  "
    assert not host_user.has_payout_account


def test_name_for_display_prefers_display_name(shopper_user):
    assert shopper_user.name_for_display() == "Sam Shopper"

    shopper_user.display_name = "Sammy"
    assert shopper_user.name_for_display() == "Sammy"

    shopper_user.display_name = ""
    shopper_user.full_name = ""
    assert shopper_user.name_for_display("there") == "there"
    assert shopper_user.name_for_display() == "shopper"


def test_is_admin(admin_user, shopper_user):
    assert is_admin(admin_user)
    assert not is_admin(shopper_user)
    assert not is_admin(AnonymousUser())
    assert not is_admin(None)

    UserRole.objects.filter(user=admin_user).delete()
    assert not is_admin(admin_user)
