"""
Catalog access service.

Responsibilities:
- Read restaurants (optionally with a store-computed distance), deals and categories.
- Validate and apply creates, partial updates and deletes.
- Replace a restaurant's category set as a single logical operation.
- Surface foreign-key failures as reference violations.
"""
