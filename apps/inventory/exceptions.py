from apps.utils.exceptions import ConflictError, InvariantViolation, NotFoundError, ValidationFailed


class BookNotFound(NotFoundError):
    default_code = "book_not_found"

    def __init__(self, book_id):
        super().__init__(f"Book {book_id} not found.", book_id=str(book_id))


class BookUnavailable(ConflictError):
    default_code = "book_unavailable"

    def __init__(self, book):
        super().__init__(
            f'"{book.title}" is currently unavailable.',
            book_id=str(book.id),
            title=book.title,
        )


class InsufficientStock(ConflictError):
    default_code = "insufficient_stock"

    def __init__(self, book, available, requested):
        self.book = book
        self.available = available
        self.requested = requested
        super().__init__(
            f'"{book.title}" only has {available} items in stock',
            book_id=str(book.id),
            title=book.title,
            available=available,
            requested=requested,
        )


class InvalidQuantity(ValidationFailed):
    default_code = "invalid_quantity"

    def __init__(self, qty):
        super().__init__(f"Quantity must be a positive integer, got {qty!r}.", quantity=qty)


class LedgerDriftError(InvariantViolation):
    default_code = "ledger_drift"
