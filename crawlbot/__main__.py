from crawlbot.cli import main

main()
