from broken_link_crawler.cli import main

main()
