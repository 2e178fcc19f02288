from janitor.main import main

main()
