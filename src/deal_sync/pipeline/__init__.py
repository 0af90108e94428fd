"""
Deal sync pipeline components: fetching, transformation, reconciliation,
retry and scheduling.

Data flows one way: scheduler -> fetcher -> transformer -> reconciler, with
the failure ledger recording anything that does not make it through.
"""
