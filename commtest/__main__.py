from commtest.cli import main

main()
