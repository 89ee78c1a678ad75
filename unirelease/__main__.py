from unirelease.cli.app import main

main()
