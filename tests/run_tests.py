#!/usr/bin/env python3
"""
Test runner for OU Path Sync.

Discovers the test_*.py modules next to this file, runs each as its own suite and
prints a per-module tally. Exit status is non-zero when any module fails.

Usage:
    python tests/run_tests.py [module ...]     e.g. run_tests.py test_reconcile test_export
"""

import os
import sys
import unittest

TESTS_DIR = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.dirname(TESTS_DIR))
sys.path.insert(0, TESTS_DIR)


def find_test_modules(selected=None):
    """Return sorted test module names, limited to the selected ones when given."""
    modules = sorted(
        name[:-3] for name in os.listdir(TESTS_DIR)
        if name.startswith('test_') and name.endswith('.py')
    )
    if selected:
        wanted = {s[:-3] if s.endswith('.py') else s for s in selected}
        modules = [m for m in modules if m in wanted]
    return modules


def run_module(loader, module_name, verbosity):
    """Run one test module and return its unittest result."""
    print(f"\n{'=' * 60}")
    print(f"Running {module_name}")
    print('=' * 60)

    suite = loader.loadTestsFromName(module_name)
    return unittest.TextTestRunner(verbosity=verbosity).run(suite)


def main(argv=None):
    """Run the selected or all test modules."""
    args = sys.argv[1:] if argv is None else argv
    verbosity = 2 if '-v' in args else 1
    selected = [a for a in args if not a.startswith('-')]

    modules = find_test_modules(selected)
    if not modules:
        print("No test modules found!")
        return 1

    loader = unittest.TestLoader()
    results = {name: run_module(loader, name, verbosity) for name in modules}

    print(f"\n{'=' * 60}")
    print("TEST SUMMARY")
    print('=' * 60)
    failed_modules = 0
    for name, result in results.items():
        problems = len(result.failures) + len(result.errors)
        status = 'ok' if result.wasSuccessful() else 'FAILED'
        print(f"  {name:<28} {result.testsRun:>4} run  {problems:>3} failed  {len(result.skipped):>3} skipped  {status}")
        if not result.wasSuccessful():
            failed_modules += 1

    total = sum(r.testsRun for r in results.values())
    print(f"\nModules: {len(results)}  Tests: {total}  Failed modules: {failed_modules}")
    return 1 if failed_modules else 0


if __name__ == "__main__":
    sys.exit(main())
