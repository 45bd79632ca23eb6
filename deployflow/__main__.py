from deployflow.cli import main

main()
