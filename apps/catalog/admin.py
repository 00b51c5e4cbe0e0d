from django.contrib import admin
from .models import Book


@admin.register(Book)
class BookAdmin(admin.ModelAdmin):
    list_display = ('title', 'author', 'price', 'stock', 'is_active')
    list_filter = ('is_active',)
    search_fields = ('title', 'author', 'isbn')

    def get_readonly_fields(self, request, obj=None):
        # Initial stock on create only; afterwards it moves through the inventory ledger
        if obj is not None:
            return ('stock',)
        return ()
