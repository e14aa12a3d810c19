from hermit_launcher.cli import main

main()
