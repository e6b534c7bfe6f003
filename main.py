# main.py

from nearchat.runtime.app import main


if __name__ == "__main__":
    main()
