from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Store staff member. The role decides which endpoints are reachable."""

    class Roles(models.TextChoices):
        OWNER = "owner", "Owner"
        ADMIN = "admin", "Admin"
        CASHIER = "cashier", "Cashier"
        SELLER = "seller", "Seller"

    role = models.CharField(
        max_length=20,
        choices=Roles.choices,
        default=Roles.SELLER,
        help_text="Application role controlling access level",
    )
    full_name = models.CharField(max_length=150, blank=True)
    phone = models.CharField(max_length=24, blank=True)

    def __str__(self):
        return f"{self.username} ({self.role})"

    @property
    def is_seller(self):
        return self.role == self.Roles.SELLER

    class Meta:
        verbose_name = "User"
        verbose_name_plural = "Users"
        indexes = [models.Index(fields=["role"], name="accounts_user_role_idx")]
