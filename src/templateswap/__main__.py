from templateswap.cli import main

main()
