# apps/catalog/tests.py
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APITestCase

from .models import Book


class BookModelTests(TestCase):
    def test_stock_cannot_go_negative(self):
        book = Book.objects.create(title="Beloved", author="Toni Morrison", price=Decimal("9.00"), stock=1)

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Book.objects.filter(pk=book.pk).update(stock=-1)

    def test_isbn_is_optional_but_unique(self):
        Book.objects.create(title="A", author="X", price=Decimal("1.00"))
        Book.objects.create(title="B", author="X", price=Decimal("1.00"))
        Book.objects.create(title="C", author="X", price=Decimal("1.00"), isbn="9780140449136")

        with self.assertRaises(IntegrityError):
            Book.objects.create(title="D", author="X", price=Decimal("1.00"), isbn="9780140449136")


class BookViewSetTests(APITestCase):
    def setUp(self):
        self.visible = Book.objects.create(
            title="The Hobbit", author="J.R.R. Tolkien", price=Decimal("12.50"), stock=3
        )
        Book.objects.create(title="Sold Out", author="Nobody", price=Decimal("5.00"), stock=0)
        Book.objects.create(
            title="Hidden", author="Nobody", price=Decimal("5.00"), stock=2, is_active=False
        )

    def test_list_is_public_and_hides_inactive_books(self):
        response = self.client.get("/api/v1/catalog/books/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        titles = [row["title"] for row in response.data["results"]]
        self.assertEqual(titles, ["Sold Out", "The Hobbit"])

    def test_in_stock_flag(self):
        response = self.client.get("/api/v1/catalog/books/", {"search": "Sold"})
        row = response.data["results"][0]
        self.assertFalse(row["in_stock"])
        self.assertEqual(row["stock"], 0)

    def test_retrieve(self):
        response = self.client.get(f"/api/v1/catalog/books/{self.visible.id}/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["price"], "12.50")
        self.assertTrue(response.data["in_stock"])

    def test_catalog_is_read_only(self):
        response = self.client.post("/api/v1/catalog/books/", {"title": "New"}, format="json")
        self.assertIn(
            response.status_code,
            (status.HTTP_401_UNAUTHORIZED, status.HTTP_405_METHOD_NOT_ALLOWED),
        )
