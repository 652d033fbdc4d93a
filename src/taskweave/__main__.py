from taskweave.cli import main

main()
