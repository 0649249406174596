from fastfacts.cli import main

main()
