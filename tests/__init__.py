"""MailSweep test suite.

What:
  Marks ``tests`` as a package. Unit suites live in ``tests/unit`` (engine,
  gateway and configuration against in-memory fakes); ``tests/e2e`` drives the
  CLI through Typer's test runner.
"""
