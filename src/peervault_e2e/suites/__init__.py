"""End-to-end suites, run in the order listed in ``runner.SUITES``.

Each module exposes ``TESTS``, a list of ``TestDef``. Later suites rely on
the pairing established by ``pairing``. The ``scaled_*`` modules take a
``ScaledTestContext`` and are listed in ``runner.SCALED_SUITES``.
"""
