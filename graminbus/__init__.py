"""GraminBus offline-first bus tracking service"""
