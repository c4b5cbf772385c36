#!/usr/bin/env python3
"""
Test runner script for the Broken Link Crawler

This script provides various test execution options:
- Run all tests
- Run specific test modules
- Generate coverage reports
"""

import sys
import subprocess
import argparse

TEST_MODULES = {
    'urls': "test_urls.py",
    'extractor': "test_link_extractor.py",
    'checker': "test_http_checker.py",
    'registry': "test_registry.py",
    'progress': "test_progress.py",
    'discovery': "test_discovery.py",
    'scheduler': "test_scheduler.py",
    'recorder': "test_recorder.py",
    'results': "test_results.py",
    'analyzer': "test_content_analyzer.py",
    'cli': "test_cli.py",
}


def run_command(cmd, description):
    """Run a command and handle errors"""
    print(f"\n{'='*60}")
    print(f"Running: {description}")
    print(f"Command: {' '.join(cmd)}")
    print(f"{'='*60}")

    try:
        subprocess.run(cmd, check=True, capture_output=False)
        print(f"✅ {description} completed successfully")
        return True
    except subprocess.CalledProcessError as e:
        print(f"❌ {description} failed with exit code {e.returncode}")
        return False
    except FileNotFoundError:
        print(f"❌ Command not found: {cmd[0]}")
        print("Make sure pytest is installed: pip install -e '.[test]'")
        return False


def install_dependencies():
    """Install the package with its test dependencies"""
    print("Installing test dependencies...")
    return run_command([
        sys.executable, "-m", "pip", "install", "-e", ".[test]"
    ], "Installing test dependencies")


def run_module_tests(name):
    """Run the tests of one module"""
    return run_command([
        sys.executable, "-m", "pytest",
        TEST_MODULES[name],
        "-v"
    ], f"{name} tests")


def run_integration_tests():
    """Run the end-to-end command line test only"""
    return run_command([
        sys.executable, "-m", "pytest",
        "test_cli.py::TestIntegration",
        "-v"
    ], "Integration tests")


def run_all_tests():
    """Run all tests with coverage"""
    return run_command([
        sys.executable, "-m", "pytest",
        *TEST_MODULES.values(),
        "-v",
        "--cov=broken_link_crawler",
        "--cov-report=term-missing",
        "--cov-report=html:htmlcov"
    ], "All tests with coverage")


def run_quick_tests():
    """Run tests without coverage for quick feedback"""
    return run_command([
        sys.executable, "-m", "pytest",
        *TEST_MODULES.values(),
        "--tb=short"
    ], "Quick tests (no coverage)")


def run_specific_test(test_name):
    """Run a specific test"""
    return run_command([
        sys.executable, "-m", "pytest",
        test_name,
        "-v", "-s"
    ], f"Specific test: {test_name}")


def main():
    """Main function"""
    parser = argparse.ArgumentParser(description="Test runner for Broken Link Crawler")
    parser.add_argument("--install", action="store_true",
                        help="Install test dependencies")
    parser.add_argument("--module", choices=sorted(TEST_MODULES),
                        help="Run the tests of one module")
    parser.add_argument("--integration", action="store_true",
                        help="Run integration tests only")
    parser.add_argument("--quick", action="store_true",
                        help="Run quick tests without coverage")
    parser.add_argument("--test", type=str,
                        help="Run specific test (e.g., test_scheduler.py::TestChunkScheduler)")
    parser.add_argument("--all", action="store_true",
                        help="Run all tests with coverage (default)")

    args = parser.parse_args()

    # If no specific arguments, run all tests
    if not any([args.install, args.module, args.integration, args.quick, args.test]):
        args.all = True

    success = True

    if args.install:
        success &= install_dependencies()

    if args.module:
        success &= run_module_tests(args.module)

    if args.integration:
        success &= run_integration_tests()

    if args.quick:
        success &= run_quick_tests()

    if args.test:
        success &= run_specific_test(args.test)

    if args.all:
        success &= run_all_tests()

    print(f"\n{'='*60}")
    if success:
        print("🎉 All operations completed successfully!")
        if args.all:
            print("\n📊 Coverage report generated in htmlcov/index.html")
    else:
        print("❌ Some operations failed!")
        sys.exit(1)
    print(f"{'='*60}")


if __name__ == "__main__":
    main()
