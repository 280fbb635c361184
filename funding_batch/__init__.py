"""
funding_batch -- Billing automation scheduler.

Holds the automation records, pure schedule evaluation, the pluggable
runner strategies (contract billing, recurring transactions, contract
expiry) and the scheduler tick that an external periodic invoker calls.

Architecture:
    funding_batch/ is a top-level package built on funding_kernel.
    funding_kernel's domain and services never import funding_batch;
    only db.engine.create_tables loads its models to register the tables.

Invariants:
    - Schedule evaluation is pure (no I/O, caller supplies ``after``).
    - Clock injection: no datetime.now() calls.
    - One automation's failure never aborts its siblings in a tick.
    - Runners bill through the TransactionLedger only, under the same
      per-contract lock as manual posts.
"""
