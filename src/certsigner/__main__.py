from certsigner.apps.cli.app import main

main()
