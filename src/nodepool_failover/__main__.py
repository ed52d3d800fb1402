from nodepool_failover.cli import main

if __name__ == "__main__":
    main()
