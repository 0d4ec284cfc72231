from sepsis_processing.data_setup import main

if __name__ == "__main__":
    main()
