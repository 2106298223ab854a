from django.contrib.auth import get_user_model
from django.test import RequestFactory, SimpleTestCase, TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from .permissions import RolePermission


class _View:
    def __init__(self, action, allowed_roles=None, action_roles=None):
        self.action = action
        if allowed_roles is not None:
            self.allowed_roles = allowed_roles
        if action_roles is not None:
            self.action_roles = action_roles


class _User:
    is_authenticated = True

    def __init__(self, role):
        self.role = role


class RolePermissionTests(SimpleTestCase):
    def check(self, role, view):
        request = RequestFactory().get("/")
        request.user = _User(role)
        return RolePermission().has_permission(request, view)

    def test_allowed_roles(self):
        view = _View("list", allowed_roles=["owner", "admin"])
        self.assertTrue(self.check("admin", view))
        self.assertFalse(self.check("seller", view))

    def test_action_roles_override_view_roles(self):
        view = _View(
            "refund",
            allowed_roles=["owner", "admin", "cashier", "seller"],
            action_roles={"refund": ["owner", "admin"]},
        )
        self.assertTrue(self.check("owner", view))
        self.assertFalse(self.check("cashier", view))
        view.action = "list"
        self.assertTrue(self.check("cashier", view))

    def test_no_roles_means_any_authenticated_user(self):
        self.assertTrue(self.check("seller", _View("list")))


class UserAPITests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.owner = self.user_model.objects.create_user(
            username="owner", password="pass1234", role=self.user_model.Roles.OWNER
        )
        self.admin = self.user_model.objects.create_user(
            username="admin", password="pass1234", role=self.user_model.Roles.ADMIN
        )
        self.seller = self.user_model.objects.create_user(
            username="seller", password="pass1234", role=self.user_model.Roles.SELLER
        )

    def test_me_is_open_to_every_role(self):
        self.client.force_authenticate(user=self.seller)
        response = self.client.get(reverse("user-me"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["role"], "seller")

    def test_sellers_cannot_manage_staff(self):
        self.client.force_authenticate(user=self.seller)
        response = self.client.get(reverse("user-list"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_only_owner_grants_owner(self):
        url = reverse("user-update-role", args=[self.seller.pk])

        self.client.force_authenticate(user=self.admin)
        response = self.client.put(url, {"role": "owner"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data["error"], "forbidden")

        response = self.client.put(url, {"role": "cashier"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.seller.refresh_from_db()
        self.assertEqual(self.seller.role, self.user_model.Roles.CASHIER)

        self.client.force_authenticate(user=self.owner)
        response = self.client.put(url, {"role": "owner"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_invalid_role(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.put(
            reverse("user-update-role", args=[self.seller.pk]),
            {"role": "warehouse"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "invalid_role")

    def test_token_obtain(self):
        response = self.client.post(
            reverse("token_obtain_pair"),
            {"username": "seller", "password": "pass1234"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn("access", response.data)
