from invoke import run, task


@task
def test(ctx):
    test_cmd = [
        "pytest",  # Test command
        "--cov-report term-missing",  # Print only uncovered lines to stdout
        "--cov mime_multipart",  # Test only this package
        "--timeout=30",  # Each test should timeout after 30 sec
    ]

    # Test in this directory
    test_cmd.append("tests")

    run(" ".join(test_cmd), pty=False)


@task
def fuzz(ctx, target="parser", runs=100000):
    """Run one of the fuzz/fuzz_*.py harnesses: parser, headers or decoders."""
    run(f"python fuzz/fuzz_{target}.py -runs={runs}", pty=False)
