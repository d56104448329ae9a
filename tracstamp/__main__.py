from tracstamp.node.agent import main

if __name__ == "__main__":
    main()
