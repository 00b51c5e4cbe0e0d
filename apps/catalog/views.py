from rest_framework import viewsets, filters
from rest_framework.permissions import AllowAny
from .models import Book
from .serializers import BookSerializer


class BookViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Publicly accessible book list (price + stock snapshot).
    """
    queryset = Book.objects.filter(is_active=True)
    serializer_class = BookSerializer
    permission_classes = [AllowAny]
    filter_backends = [filters.SearchFilter]
    search_fields = ['title', 'author']
