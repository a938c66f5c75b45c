"""
Management command to load a starter product catalogue.
"""
import json
from decimal import Decimal

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from ordering.infra.models import ProductORM

DEFAULT_PRODUCTS = [
    {"name": "Jasmine Rice 5kg", "price": "245.00", "stock": 40},
    {"name": "Fish Sauce 700ml", "price": "39.00", "stock": 120},
    {"name": "Green Curry Paste", "price": "55.00", "stock": 80},
    {"name": "Coconut Milk 400ml", "price": "32.50", "stock": 150},
    {"name": "Palm Sugar 500g", "price": "48.00", "stock": 60},
]


class Command(BaseCommand):
    help = 'Create or update products with their price and stock'

    def add_arguments(self, parser):
        parser.add_argument(
            '--file',
            help='JSON file with a list of {"name", "price", "stock"} objects',
        )
        parser.add_argument(
            '--reset-stock',
            action='store_true',
            help='Overwrite stock of existing products instead of keeping it',
        )

    def handle(self, *args, **options):
        products = self._load(options['file']) if options['file'] else DEFAULT_PRODUCTS
        created = updated = 0

        with transaction.atomic():
            for entry in products:
                try:
                    name = entry['name']
                    price = Decimal(str(entry['price']))
                    stock = int(entry['stock'])
                except (KeyError, ValueError, ArithmeticError) as e:
                    raise CommandError(f'Invalid product entry {entry!r}: {e}')
                if stock < 0:
                    raise CommandError(f'Stock for {name} must be non-negative')

                product = ProductORM.objects.filter(name=name).first()
                if product is None:
                    ProductORM.objects.create(name=name, price=price, stock=stock)
                    created += 1
                    continue
                product.price = price
                fields = ['price', 'updated_at']
                if options['reset_stock']:
                    product.stock = stock
                    fields.append('stock')
                product.save(update_fields=fields)
                updated += 1

        self.stdout.write(
            self.style.SUCCESS(f'Seeded products: {created} created, {updated} updated')
        )

    def _load(self, path):
        try:
            with open(path, encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CommandError(f'Cannot read {path}: {e}')
        if not isinstance(data, list):
            raise CommandError('Product file must contain a JSON list')
        return data
