from kemono_dl.extractor import main

if __name__ == "__main__":
    raise SystemExit(main())
