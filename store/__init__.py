"""Store app: catalog, orders, refunds and the stock ledger.

Views stay thin; the transactional work lives in the service modules
(orders, refunds, catalog) on top of ledger and pricing.
"""
