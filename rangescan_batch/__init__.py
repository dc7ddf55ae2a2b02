"""
rangescan_batch -- Resumable, time-bounded batch scans over the key store.

Runs a handler over every key in a range in slices that stop cooperatively
at a time limit, checkpoint their cursor and handler state, and re-schedule
themselves until the range is exhausted.  Scans persist as continuation
rows, so a polling runner (or the CLI) can pick them up in any process.

Architecture:
    rangescan_batch/ is a top-level package.  Nothing in rangescan_kernel
    imports from rangescan_batch, except ``db.engine.import_all_models``
    which loads the ORM tables for ``create_tables``.

Invariants:
    - A slice never stops mid-item; the time limit is checked before each
      page fetch after the first.
    - At most one slice of a scan is in flight (row lock + RUNNING status).
    - ``complete()`` runs exactly once per logical scan.
    - A failed slice defers nothing; its previous checkpoint remains the
      recovery point.
    - Handler state crossing a slice boundary is JSON-serializable.
"""
