import deploytix

if __name__ == '__main__':
	deploytix.run_as_a_module()
