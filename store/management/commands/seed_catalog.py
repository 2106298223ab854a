"""
Management command to load categories and products from a JSON file.

Expected shape:
    {
        "categories": ["Drinks", "Snacks"],
        "products": [
            {"name": "Cola 1L", "barcode": "4780000000011", "category": "Drinks",
             "unit": "pcs", "currency": "UZS", "price": "12000",
             "incoming_price": "9000", "stock": "24"}
        ]
    }
"""

import json
from decimal import Decimal, InvalidOperation

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from store.catalog import CatalogService
from store.events import EventPublisher
from store.exceptions import StoreError
from store.models import Category, Currency, Product


class Command(BaseCommand):
    help = "Creates categories and products from a JSON file; initial stock is journaled"

    def add_arguments(self, parser):
        parser.add_argument("path", help="Path to the catalog JSON file")
        parser.add_argument(
            "--user",
            help="Username recorded as the author of the initial stock entries",
        )

    def handle(self, *args, **options):
        try:
            with open(options["path"], encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, ValueError) as exc:
            raise CommandError(f"Cannot read {options['path']}: {exc}")

        actor = None
        if options.get("user"):
            User = get_user_model()
            try:
                actor = User.objects.get(username=options["user"])
            except User.DoesNotExist:
                raise CommandError(f"User {options['user']} does not exist")

        categories = {}
        for name in data.get("categories", []):
            category, created = Category.objects.get_or_create(name=name)
            categories[name.lower()] = category
            if created:
                self.stdout.write(self.style.SUCCESS(f"Category created: {name}"))

        # Seeding is not a live sale, nobody needs to hear about it.
        catalog = CatalogService(EventPublisher())
        created = skipped = 0
        for row in data.get("products", []):
            barcode = row.get("barcode") or None
            if barcode and Product.objects.filter(barcode=barcode).exists():
                skipped += 1
                self.stdout.write(
                    self.style.WARNING(f"Barcode {barcode} exists, skipped {row.get('name')}")
                )
                continue
            category = None
            if row.get("category"):
                category = categories.get(row["category"].lower())
                if category is None:
                    category, _ = Category.objects.get_or_create(name=row["category"])
                    categories[row["category"].lower()] = category
            try:
                catalog.create_product(
                    actor,
                    name=row["name"],
                    barcode=barcode,
                    category=category,
                    unit=row.get("unit") or "pcs",
                    currency=row.get("currency") or Currency.UZS,
                    price=Decimal(str(row["price"])),
                    incoming_price=Decimal(str(row.get("incoming_price") or 0)),
                    stock=Decimal(str(row.get("stock") or 0)),
                )
            except (KeyError, InvalidOperation, StoreError) as exc:
                skipped += 1
                self.stdout.write(
                    self.style.WARNING(f"Skipped {row.get('name')!r}: {exc}")
                )
                continue
            created += 1

        self.stdout.write(
            self.style.SUCCESS(
                f"Catalog seeding complete: {created} products created, {skipped} skipped"
            )
        )
