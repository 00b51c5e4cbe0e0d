# apps/catalog/serializers.py
from rest_framework import serializers
from .models import Book


class BookSerializer(serializers.ModelSerializer):
    in_stock = serializers.SerializerMethodField()

    class Meta:
        model = Book
        fields = [
            "id",
            "title",
            "author",
            "isbn",
            "description",
            "price",
            "stock",
            "in_stock",
            "is_active",
        ]
        read_only_fields = fields

    def get_in_stock(self, obj):
        return obj.stock > 0
